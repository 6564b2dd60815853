"""
Path Utility Module.
Resolves the static asset locations served by the web server.
"""

import os
import sys

# Folder (relative to the static dir) that the asset build writes into
PUBLIC_PATH = "build"


def get_project_root() -> str:
    """
    Returns the absolute path of the repository root.
    Works for both a source checkout and a PyInstaller bundle.

    Returns:
        str: The absolute path to the project root.
    """
    # PyInstaller creates a temp folder and stores path in _MEIPASS
    bundle_dir = getattr(sys, "_MEIPASS", None)
    if bundle_dir:
        return bundle_dir
    return os.path.abspath(
        os.path.join(os.path.dirname(__file__), os.pardir, os.pardir)
    )


def get_default_static_dir() -> str:
    """Returns the `static` folder at the repository root."""
    return os.path.join(get_project_root(), "static")


def get_build_dir(static_dir: str) -> str:
    """
    Returns the asset build folder beneath a static dir.

    Args:
        static_dir: Absolute path of the static content root.

    Returns:
        str: Absolute path to the build output folder.
    """
    return os.path.join(static_dir, PUBLIC_PATH)
