"""Logging setup for the command line.

Library modules only create ``logger = logging.getLogger(__name__)``; the
CLI calls :func:`setup_logging` once to route records through rich.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_HANDLER_NAME = "skillfactory-rich"


def setup_logging(level: str | int = "WARNING", console: Console | None = None) -> None:
    """Install a RichHandler on the root logger.

    Calling it again only changes the level.

    Args:
        level: Logging level name or number.
        console: Console to log to (default: stderr).
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers:
        if handler.get_name() == _HANDLER_NAME:
            handler.setLevel(level)
            return

    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_time=False,
        show_path=False,
    )
    handler.set_name(_HANDLER_NAME)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
