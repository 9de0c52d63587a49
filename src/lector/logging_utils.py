from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "lector"
_HANDLER_ATTR = "_lector_rich_handler"


def configure_logging(debug: bool = False, console: Console | None = None) -> logging.Logger:
    """Attach a single RichHandler (stderr) to the ``lector`` logger."""
    logger = logging.getLogger(LOGGER_NAME)
    handler = getattr(logger, _HANDLER_ATTR, None)
    if handler is None:
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        setattr(logger, _HANDLER_ATTR, handler)
        logger.propagate = False
    set_debug_logging(debug)
    return logger


def set_debug_logging(enabled: bool) -> None:
    logging.getLogger(LOGGER_NAME).setLevel(logging.DEBUG if enabled else logging.INFO)
