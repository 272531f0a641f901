"""Send text to, and capture output from, a handle's agent pane."""

from __future__ import annotations

import asyncio
import sys

import typer

from workmux.commands._support import build_engine, unwrap
from workmux.core.console import console
from workmux.core.decorators import handle_exceptions
from workmux.workflow.panes import PaneBridge, PaneTarget


async def _target(
    name: str | None, pane_id: str | None, repo: str | None
) -> tuple[PaneBridge, PaneTarget]:
    engine = await build_engine(repo)
    if pane_id and name is None:
        bridge = PaneBridge(engine.tmux, engine.repos[0].config.agent)
        return bridge, PaneTarget(pane_id=pane_id)
    handle = unwrap(await engine.resolve(name, repo))
    bridge = PaneBridge(engine.tmux, handle.repo.config.agent)
    return bridge, unwrap(await bridge.resolve_agent_pane(handle, pane_id))


@handle_exceptions
def send(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Handle (default: the current worktree)."),
    message: str | None = typer.Argument(None, help="Text to send (default: read stdin)."),
    pane_id: str | None = typer.Option(None, "--pane-id", help="Target pane id, e.g. %3."),
    command: bool = typer.Option(
        False, "--command", help="Send a single-line shell command and press Enter."
    ),
    no_enter: bool = typer.Option(False, "--no-enter", help="Do not submit with Enter."),
    repo: str | None = typer.Option(None, "--repo", help="Repository label or path."),
) -> None:
    """Type a message into the agent pane of a handle."""
    _ = ctx
    payload = message if message is not None else sys.stdin.read()

    async def _run() -> str:
        bridge, target = await _target(name, pane_id, repo)
        unwrap(await bridge.send(target.pane_id, payload, as_command=command, enter=not no_enter))
        return target.pane_id

    sent_to = asyncio.run(_run())
    console.print(f"[green]✓[/green] Sent to {sent_to}", highlight=False)


@handle_exceptions
def capture(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Handle (default: the current worktree)."),
    pane_id: str | None = typer.Option(None, "--pane-id", help="Target pane id, e.g. %3."),
    lines: int = typer.Option(200, "--lines", "-n", min=1, help="Number of lines to capture."),
    ansi: bool = typer.Option(False, "--ansi", help="Keep ANSI escape sequences."),
    repo: str | None = typer.Option(None, "--repo", help="Repository label or path."),
) -> None:
    """Print the most recent output of a handle's agent pane."""
    _ = ctx

    async def _run() -> str:
        bridge, target = await _target(name, pane_id, repo)
        return unwrap(await bridge.capture(target.pane_id, lines, ansi=ansi))

    output = asyncio.run(_run())
    # Raw pane text; rich would reinterpret brackets and escapes.
    sys.stdout.write(output)
    sys.stdout.flush()
