"""
Entry point for running storesync as a module.

Usage:
    python -m storesync [command] [options]
"""

from storesync.cli import main

if __name__ == "__main__":
    main()
