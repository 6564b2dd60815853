"""treeserve: static asset server with an optional real-time sync endpoint."""

__version__ = "0.1.0"
