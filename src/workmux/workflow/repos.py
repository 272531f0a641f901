"""Discover the repositories an invocation operates on."""

from __future__ import annotations

import logging
from pathlib import Path

from workmux.core.config import load_config
from workmux.core.result import (
    Err,
    NotFoundError,
    Ok,
    ProbeError,
    ProbeErrorKind,
    Result,
    WorkmuxError,
)
from workmux.core.runtime import RuntimeContext
from workmux.git import find_repo_root, iter_git_repos
from workmux.tmux import TmuxClient
from workmux.workflow.handles import RepoContext

logger = logging.getLogger(__name__)


def _context_for(root: Path, runtime: RuntimeContext) -> RepoContext:
    current = find_repo_root(runtime.cwd)
    if current == root:
        return RepoContext(root=root, config=runtime.config)
    config, meta = load_config(runtime.config_path, root)
    if meta.error:
        logger.warning("Config for %s is invalid, using defaults: %s", root, meta.error)
    return RepoContext(root=root, config=config)


async def discover_repos(
    runtime: RuntimeContext, selector: str | None = None
) -> Result[list[RepoContext], WorkmuxError]:
    """The repository containing cwd plus every `repo_paths` entry, optionally filtered.

    Each repository is paired with its own effective configuration (global
    document merged with that repository's project document).
    """
    roots: list[Path] = []
    current = find_repo_root(runtime.cwd)
    if current is not None:
        roots.append(current)
    if runtime.config.repo_paths:
        for root in await iter_git_repos(
            runtime.config.repo_paths, timeout=runtime.config.command_timeout
        ):
            if root not in roots:
                roots.append(root)

    repos = [_context_for(root, runtime) for root in roots]
    if selector is not None:
        repos = [repo for repo in repos if repo.matches(selector)]
        if not repos:
            return Err(NotFoundError(f"No repository matches '{selector}'", context={"repo": selector}))
    if not repos:
        return Err(
            ProbeError(
                "Not inside a git repository and no repo_paths are configured",
                tool="git",
                kind=ProbeErrorKind.NOT_A_REPO,
                context={"cwd": str(runtime.cwd)},
            )
        )
    return Ok(repos)


def tmux_for(runtime: RuntimeContext) -> TmuxClient:
    config = runtime.config
    return TmuxClient(
        socket=config.tmux_socket, session=config.session, timeout=config.command_timeout
    )


__all__ = ["discover_repos", "tmux_for"]
