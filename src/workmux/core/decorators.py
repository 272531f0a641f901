from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from typing import Any, NoReturn, TypeVar

import typer
from rich.markup import escape

from workmux.core.config import ConfigError
from workmux.core.console import console
from workmux.core.result import MergeConflictError, PartialFailureError, WorkmuxError

F = TypeVar("F", bound=Callable[..., Any])


def exit_with_error(exc: Exception) -> NoReturn:
    """Print an error (and its step report, if any) and exit with status 1."""
    console.print(f"[red]{escape(str(exc))}[/red]", highlight=False)
    if isinstance(exc, MergeConflictError):
        for path in exc.conflicts:
            console.print(f"  conflict: {path}", style="yellow", markup=False, highlight=False)
    if isinstance(exc, PartialFailureError):
        for line in exc.report_lines():
            if line.startswith("failed:"):
                style = "red"
            elif line.startswith("warning:"):
                style = "yellow"
            else:
                style = "dim"
            console.print(f"  {line}", style=style, markup=False, highlight=False)
    raise typer.Exit(code=1)


def handle_exceptions(func: F) -> F:
    """Decorate CLI entrypoints to present friendly errors and exit cleanly."""

    if asyncio.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except (WorkmuxError, ConfigError, PermissionError) as exc:
                exit_with_error(exc)

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(func)
    def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (WorkmuxError, ConfigError, PermissionError) as exc:
            exit_with_error(exc)

    return sync_wrapper  # type: ignore[return-value]


__all__ = ["exit_with_error", "handle_exceptions"]
