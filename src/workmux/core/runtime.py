"""
Runtime context for workmux.

The CLI callback loads configuration once per invocation and stores it in a
context variable; commands read it back with `get_runtime()`.

Usage:
    from workmux.core.runtime import runtime_context, get_runtime

    with runtime_context(config, meta) as ctx:
        do_work()

    def some_command():
        ctx = get_runtime()
        prefix = ctx.config.window_prefix
"""

from __future__ import annotations

import contextvars
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:
    from workmux.core.config import ConfigLoadResult, WorkmuxConfig


@dataclass
class RuntimeContext:
    """Per-invocation state shared by commands.

    Attributes:
        config: The effective WorkmuxConfig for this invocation
        config_meta: Where the configuration came from
        cwd: Directory the command was invoked from
        trace_id: Identifier used to correlate log lines of one invocation
        verbose: Whether --verbose was passed
        config_path: Explicit --config override, re-used when a command loads
            the project document of another repository
    """

    config: WorkmuxConfig
    config_meta: ConfigLoadResult | None = None
    cwd: Path = field(default_factory=Path.cwd)
    trace_id: str = field(default_factory=lambda: uuid4().hex[:12])
    verbose: bool = False
    config_path: Path | None = None


_runtime_ctx: contextvars.ContextVar[RuntimeContext | None] = contextvars.ContextVar(
    "workmux_runtime",
    default=None,
)


class NoRuntimeContextError(RuntimeError):
    """Raised when get_runtime() is called outside a runtime_context block."""

    def __init__(self) -> None:
        super().__init__(
            "No runtime context available. "
            "Wrap entrypoints in 'with runtime_context(config):' or use the CLI bootstrap."
        )


def get_runtime() -> RuntimeContext:
    """Get the current runtime context.

    Raises:
        NoRuntimeContextError: If called outside a runtime_context block
    """
    ctx = _runtime_ctx.get()
    if ctx is None:
        raise NoRuntimeContextError()
    return ctx


def set_runtime_context(ctx: RuntimeContext) -> contextvars.Token[RuntimeContext | None]:
    """Set the current runtime context (used for CLI bootstrap and tests)."""
    return _runtime_ctx.set(ctx)


def reset_runtime_context(token: contextvars.Token[RuntimeContext | None]) -> None:
    _runtime_ctx.reset(token)


@contextmanager
def runtime_context(
    config: WorkmuxConfig,
    config_meta: ConfigLoadResult | None = None,
    *,
    cwd: Path | None = None,
    verbose: bool = False,
    trace_id: str | None = None,
) -> Iterator[RuntimeContext]:
    """Establish runtime state for the duration of the block."""
    ctx = RuntimeContext(
        config=config,
        config_meta=config_meta,
        cwd=(cwd or Path.cwd()).resolve(),
        trace_id=trace_id or uuid4().hex[:12],
        verbose=verbose,
    )
    token = _runtime_ctx.set(ctx)
    try:
        yield ctx
    finally:
        _runtime_ctx.reset(token)


__all__ = [
    "NoRuntimeContextError",
    "RuntimeContext",
    "get_runtime",
    "reset_runtime_context",
    "runtime_context",
    "set_runtime_context",
]
