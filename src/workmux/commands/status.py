"""Agent status hook: `workmux set-window-status working|waiting|done|clear`.

Agent runtimes call this from their own hooks, so it stays quiet: outside
tmux with no explicit target it does nothing, and a tmux rejection is logged
to stderr while the exit status stays 0.
"""

from __future__ import annotations

import asyncio
import logging
import os

import typer

from workmux.commands._support import build_engine, runtime_tmux, unwrap
from workmux.core.decorators import handle_exceptions
from workmux.core.result import Err, Ok, ValidationError
from workmux.core.runtime import get_runtime
from workmux.tmux import TmuxClient
from workmux.workflow.status import StatusEvent, StatusKind, StatusTracker, TmuxAnnotationStore

logger = logging.getLogger(__name__)


@handle_exceptions
def set_window_status(
    ctx: typer.Context,
    kind: StatusKind = typer.Argument(..., help="working, waiting, done or clear."),
    target: str | None = typer.Option(
        None, "--target", "-t", help="Pane or window (default: $TMUX_PANE)."
    ),
    handle: str | None = typer.Option(None, "--handle", help="Annotate this handle's window."),
) -> None:
    """Set (or clear) the agent status icon of a tmux window."""
    _ = ctx
    config = get_runtime().config

    async def _run() -> None:
        tmux: TmuxClient = runtime_tmux()
        destination = target
        if handle is not None:
            engine = await build_engine()
            resolved = unwrap(await engine.resolve(handle))
            if resolved.window_id is None:
                raise ValidationError(
                    f"'{resolved.name}' has no tmux window", context={"handle": resolved.name}
                )
            destination = resolved.window_id
            tmux = engine.tmux
        if destination is None:
            destination = os.environ.get("TMUX_PANE") if TmuxClient.inside_tmux() else None
        if destination is None:
            logger.debug("Not inside tmux and no target given; ignoring %s", kind.value)
            return

        tracker = StatusTracker(
            TmuxAnnotationStore(tmux), config.status_icons, status_format=config.status_format
        )
        match await tracker.handle(StatusEvent(target=destination, kind=kind)):
            case Err(err):
                logger.warning("Could not set status %s on %s: %s", kind.value, destination, err)
            case Ok(_):
                pass

    asyncio.run(_run())
