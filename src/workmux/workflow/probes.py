"""Resource probes: read-only snapshots of git worktrees and tmux windows."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from workmux.core.result import Err, Ok, ProbeError, Result
from workmux.git import AsyncRepo, operation_in_progress, resolve_git_dir
from workmux.tmux import TmuxClient

logger = logging.getLogger(__name__)

_MERGE_MSG = re.compile(r"^Merge branch '([^']+)'")


@dataclass(frozen=True)
class WorktreeRecord:
    path: Path
    branch: str | None
    is_main: bool
    operation: str | None = None

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class WindowRecord:
    window_id: str
    title: str
    pane_ids: tuple[str, ...] = ()
    session: str = ""
    status_icon: str = ""
    pane_paths: tuple[str, ...] = ()


def merging_branch(main_root: Path) -> str | None:
    """Branch named by an unfinished `git merge` in the main worktree."""
    git_dir = resolve_git_dir(main_root)
    if not (git_dir / "MERGE_HEAD").exists():
        return None
    try:
        first_line = (git_dir / "MERGE_MSG").read_text(encoding="utf-8").splitlines()[0]
    except (OSError, IndexError):
        return None
    match = _MERGE_MSG.match(first_line)
    return match.group(1) if match else None


async def list_worktrees(repo: AsyncRepo) -> Result[list[WorktreeRecord], ProbeError]:
    match await repo.worktree_list():
        case Err(err):
            return Err(err)
        case Ok(infos):
            pass

    records: list[WorktreeRecord] = []
    for info in infos:
        if info.prunable:
            logger.debug("Skipping prunable worktree %s", info.path)
            continue
        records.append(
            WorktreeRecord(
                path=info.path,
                branch=info.branch,
                is_main=info.is_main,
                operation=operation_in_progress(info.path) if info.path.exists() else None,
            )
        )
    return Ok(records)


async def list_windows(tmux: TmuxClient) -> Result[list[WindowRecord], ProbeError]:
    """Windows with their panes; a missing server/session surfaces as NO_SESSION."""
    match await tmux.list_windows():
        case Err(err):
            return Err(err)
        case Ok(windows):
            pass

    match await tmux.list_panes():
        case Err(err):
            return Err(err)
        case Ok(panes):
            pass

    by_window: dict[str, list[tuple[str, str]]] = {}
    for pane in panes:
        by_window.setdefault(pane.window_id, []).append((pane.pane_id, pane.current_path))

    records: list[WindowRecord] = []
    for window in windows:
        window_panes = by_window.get(window.window_id, [])
        records.append(
            WindowRecord(
                window_id=window.window_id,
                title=window.name,
                pane_ids=tuple(pane_id for pane_id, _ in window_panes),
                session=window.session,
                status_icon=window.status,
                pane_paths=tuple(path for _, path in window_panes if path),
            )
        )
    return Ok(records)


__all__ = ["WindowRecord", "WorktreeRecord", "list_windows", "list_worktrees", "merging_branch"]
