"""Hidden shell-completion queries.

Both commands print one item per line and print nothing at all when
anything goes wrong; a shell's completion machinery must never see an
error message.
"""

from __future__ import annotations

import asyncio
import logging

import typer

from workmux.core.result import Err, Ok
from workmux.core.runtime import get_runtime
from workmux.workflow.handles import build_registry
from workmux.workflow.repos import discover_repos, tmux_for

logger = logging.getLogger(__name__)


async def _handle_names() -> list[str]:
    runtime = get_runtime()
    match await discover_repos(runtime):
        case Err(err):
            logger.debug("Completion skipped: %s", err)
            return []
        case Ok(repos):
            pass
    match await build_registry(repos, tmux_for(runtime)):
        case Err(err):
            logger.debug("Completion skipped: %s", err)
            return []
        case Ok(registry):
            return registry.names()


async def _branch_names() -> list[str]:
    runtime = get_runtime()
    match await discover_repos(runtime):
        case Err(err):
            logger.debug("Completion skipped: %s", err)
            return []
        case Ok(repos):
            pass
    names: set[str] = set()
    for repo in repos:
        match await repo.git().list_branches():
            case Err(err):
                logger.debug("Branch completion failed for %s: %s", repo.root, err)
            case Ok(branches):
                names.update(branches)
    return sorted(names)


def complete_handles(ctx: typer.Context) -> None:
    """Print handle names, one per line."""
    _ = ctx
    for name in asyncio.run(_handle_names()):
        typer.echo(name)


def complete_git_branches(ctx: typer.Context) -> None:
    """Print local branch names, one per line."""
    _ = ctx
    for name in asyncio.run(_branch_names()):
        typer.echo(name)
