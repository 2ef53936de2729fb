"""CLI command modules for skillfactory."""

from cli.commands.extensions import extensions_app
from cli.commands.skills import skills_app

__all__ = ["extensions_app", "skills_app"]
