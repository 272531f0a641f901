"""Handle listing commands: a one-shot table and a live dashboard."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

import typer
from rich import box
from rich.live import Live
from rich.markup import escape
from rich.table import Table

from workmux.commands._support import unwrap
from workmux.core.console import console
from workmux.core.decorators import handle_exceptions
from workmux.core.result import Err, Ok, Result, WorkmuxError
from workmux.core.runtime import get_runtime
from workmux.github import PrSummary, list_prs
from workmux.workflow.handles import RepoContext, build_registry
from workmux.workflow.listing import HandleRow, RowState, build_rows
from workmux.workflow.repos import discover_repos, tmux_for

logger = logging.getLogger(__name__)

_STATE_STYLES = {
    RowState.ACTIVE: "green",
    RowState.INACTIVE: "dim",
    RowState.MERGING: "yellow",
    RowState.ORPHAN: "red",
}


async def _collect_prs(repos: list[RepoContext]) -> dict[Path, dict[str, PrSummary]]:
    found = await asyncio.gather(
        *(list_prs(repo.root, timeout=repo.config.command_timeout) for repo in repos)
    )
    return {repo.root: prs for repo, prs in zip(repos, found)}


async def _probe_rows(
    repo: str | None, *, active_only: bool, include_orphans: bool, with_prs: bool
) -> Result[list[HandleRow], WorkmuxError]:
    runtime = get_runtime()
    match await discover_repos(runtime, repo):
        case Err(err):
            return Err(err)
        case Ok(repos):
            pass
    match await build_registry(repos, tmux_for(runtime)):
        case Err(err):
            return Err(err)
        case Ok(registry):
            pass
    prs = await _collect_prs(repos) if with_prs else None
    return Ok(
        build_rows(registry, prs=prs, active_only=active_only, include_orphans=include_orphans)
    )


async def _snapshot(
    repo: str | None, *, active_only: bool, include_orphans: bool, with_prs: bool
) -> list[HandleRow]:
    return unwrap(
        await _probe_rows(
            repo, active_only=active_only, include_orphans=include_orphans, with_prs=with_prs
        )
    )


def _render(rows: list[HandleRow], *, with_prs: bool, title: str | None = None) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("REPO", style="cyan", no_wrap=True)
    table.add_column("HANDLE", style="bold", no_wrap=True)
    table.add_column("BRANCH", style="white")
    table.add_column("STATE", no_wrap=True)
    table.add_column("STATUS", no_wrap=True)
    if with_prs:
        table.add_column("PR", no_wrap=True)
    table.add_column("TMUX", justify="center", no_wrap=True)
    table.add_column("PATH", style="dim", overflow="fold")

    for row in rows:
        style = _STATE_STYLES.get(row.state, "white")
        cells = [
            row.repo,
            row.handle + (" (main)" if row.is_main else ""),
            row.branch,
            f"[{style}]{row.state}[/{style}]",
            row.status,
        ]
        if with_prs:
            cells.append(row.pr)
        cells.extend([row.tmux, row.path])
        table.add_row(*cells)
    return table


@handle_exceptions
def list_cmd(
    ctx: typer.Context,
    active: bool = typer.Option(False, "--active", "-a", help="Only handles with a window."),
    orphans: bool = typer.Option(False, "--orphans", help="Include orphan windows."),
    pr: bool = typer.Option(False, "--pr", help="Show pull request status (requires gh)."),
    repo: str | None = typer.Option(None, "--repo", help="Repository label or path."),
) -> None:
    """List handles with their worktree, window and agent status."""
    _ = ctx
    rows = asyncio.run(
        _snapshot(repo, active_only=active, include_orphans=orphans, with_prs=pr)
    )
    if not rows:
        console.print("No active worktrees found" if active else "No worktrees found")
        return
    console.print(_render(rows, with_prs=pr))


@handle_exceptions
def dashboard(
    ctx: typer.Context,
    once: bool = typer.Option(False, "--once", help="Render a single frame and exit."),
    repo: str | None = typer.Option(None, "--repo", help="Repository label or path."),
) -> None:
    """Live view of every handle, refreshed from scratch on each tick.

    A failed poll keeps the previous rows on screen and shows the error in the
    title; the next tick probes again.
    """
    _ = ctx
    refresh = get_runtime().config.dashboard_refresh
    if once:
        rows = asyncio.run(_snapshot(repo, active_only=False, include_orphans=True, with_prs=False))
        stamp = time.strftime("%H:%M:%S")
        console.print(_render(rows, with_prs=False, title=f"workmux · {stamp}"))
        return

    last_rows: list[HandleRow] = []

    def frame() -> Table:
        nonlocal last_rows
        stamp = time.strftime("%H:%M:%S")
        probed = asyncio.run(
            _probe_rows(repo, active_only=False, include_orphans=True, with_prs=False)
        )
        match probed:
            case Ok(rows):
                last_rows = rows
                return _render(rows, with_prs=False, title=f"workmux · {stamp}")
            case Err(err):
                logger.warning("Dashboard refresh failed: %s", err)
                title = f"workmux · {stamp} · [red]{escape(str(err))}[/red]"
                return _render(last_rows, with_prs=False, title=title)

    try:
        with Live(frame(), console=console, refresh_per_second=4, screen=False) as live:
            while True:
                time.sleep(refresh)
                live.update(frame())
    except KeyboardInterrupt:
        console.print("[dim]Dashboard stopped.[/dim]")
