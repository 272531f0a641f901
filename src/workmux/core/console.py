"""Rich consoles and the `workmux` log handler.

Command output (tables, handle paths, completion items) goes to `console` on
stdout so it can be piped. Log records go to `stderr_console`, which keeps
stdout clean for shell completion and `workmux path`.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

console = Console()
stderr_console = Console(stderr=True)

_LOGGER_NAME = "workmux"


def _level_number(level: str | int) -> int:
    if isinstance(level, int):
        return level
    found = logging.getLevelName(level.upper())
    return found if isinstance(found, int) else logging.WARNING


def _is_workmux_handler(handler: logging.Handler) -> bool:
    return getattr(handler, "_workmux", False)


def setup_logging(level: str | int = logging.WARNING, verbose: bool = False) -> logging.Logger:
    """Attach a Rich stderr handler to the `workmux` logger and return it.

    `verbose` forces DEBUG and adds timestamps. Calling this again replaces the
    previous handler instead of stacking a second one.
    """
    numeric_level = logging.DEBUG if verbose else _level_number(level)

    handler = RichHandler(
        console=stderr_console,
        markup=False,
        rich_tracebacks=verbose,
        show_time=verbose,
        show_path=False,
        log_time_format="%H:%M:%S",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(numeric_level)
    handler._workmux = True  # type: ignore[attr-defined]

    logger = logging.getLogger(_LOGGER_NAME)
    for old in [h for h in logger.handlers if _is_workmux_handler(h)]:
        logger.removeHandler(old)
    logger.addHandler(handler)
    logger.setLevel(numeric_level)
    logger.propagate = False

    # asyncio's slow-callback records stay out of --verbose output.
    logging.getLogger("asyncio").setLevel(max(numeric_level, logging.INFO))

    return logger


__all__ = ["console", "setup_logging", "stderr_console"]
