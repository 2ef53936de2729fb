"""skillfactory CLI.

Command-line interface for managing agent skills and extensions.
"""

from core import __version__

from cli.skillfactory.cli import app, main

__all__ = ["__version__", "app", "main"]
