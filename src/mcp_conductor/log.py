# log.py
# Logging setup. Diagnostics go to stderr through rich; stdout is left to
# display.py and to any host protocol running on it.

import logging

from rich.console import Console
from rich.logging import RichHandler

_HANDLER_NAME = "mcp_conductor.rich"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach one RichHandler to the package logger. Safe to call repeatedly."""
    logger = logging.getLogger("mcp_conductor")
    logger.setLevel(level)

    if not any(h.get_name() == _HANDLER_NAME for h in logger.handlers):
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(handler)
        logger.propagate = False

    return logger
