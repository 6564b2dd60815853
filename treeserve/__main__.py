"""Allows ``python -m treeserve``."""

from treeserve.cli.serve import main

if __name__ == "__main__":
    main()
