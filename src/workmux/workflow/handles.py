"""Handle registry: the reconciled view of worktrees and windows.

The registry is rebuilt from both probes on every invocation and never
cached. `join_handles` is a pure function of the probe results so the
join rules can be exercised without git or tmux.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from workmux.core.config import StatusIcons, WorkmuxConfig
from workmux.core.result import (
    AmbiguousHandleError,
    Err,
    NotFoundError,
    Ok,
    ProbeError,
    ProbeErrorKind,
    Result,
    WorkmuxError,
)
from workmux.git import AsyncRepo
from workmux.tmux import TmuxClient
from workmux.workflow.naming import base_name_from_window
from workmux.workflow.probes import (
    WindowRecord,
    WorktreeRecord,
    list_windows,
    list_worktrees,
    merging_branch,
)

logger = logging.getLogger(__name__)


class HandleState(StrEnum):
    BOUND = "bound"
    WORKTREE_ONLY = "worktree-only"
    WINDOW_ONLY = "window-only"


class AgentStatus(StrEnum):
    NONE = "none"
    WORKING = "working"
    WAITING = "waiting"
    DONE = "done"

    @classmethod
    def from_icon(cls, icon: str, icons: StatusIcons) -> AgentStatus:
        if not icon:
            return cls.NONE
        for status in (cls.WORKING, cls.WAITING, cls.DONE):
            if icon == getattr(icons, status.value):
                return status
        return cls.NONE


@dataclass(frozen=True)
class RepoContext:
    root: Path
    config: WorkmuxConfig

    @property
    def name(self) -> str:
        return self.root.name

    def git(self) -> AsyncRepo:
        return AsyncRepo(self.root, timeout=self.config.command_timeout)

    def matches(self, selector: str) -> bool:
        """True when `selector` names this repository by label or path."""
        if selector == self.name:
            return True
        try:
            return Path(selector).expanduser().resolve() == self.root
        except OSError:
            return False


@dataclass(frozen=True)
class Handle:
    name: str
    repo: RepoContext
    state: HandleState
    worktree_path: Path | None = None
    branch: str | None = None
    window: WindowRecord | None = None
    status: AgentStatus = AgentStatus.NONE
    merging: bool = False
    is_main: bool = False

    @property
    def window_id(self) -> str | None:
        return self.window.window_id if self.window else None

    @property
    def pane_ids(self) -> tuple[str, ...]:
        return self.window.pane_ids if self.window else ()

    @property
    def has_window(self) -> bool:
        return self.window is not None


@dataclass(frozen=True)
class Orphan:
    """A prefixed window that no worktree claims."""

    name: str
    window: WindowRecord
    reason: str


@dataclass
class HandleRegistry:
    handles: list[Handle] = field(default_factory=list)
    orphans: list[Orphan] = field(default_factory=list)

    def names(self) -> list[str]:
        return sorted({handle.name for handle in self.handles if not handle.is_main})

    def find(self, name: str, repo: str | None = None) -> list[Handle]:
        return [
            handle
            for handle in self.handles
            if handle.name == name and (repo is None or handle.repo.matches(repo))
        ]

    def orphan(self, name: str) -> Orphan | None:
        for orphan in self.orphans:
            if orphan.name == name:
                return orphan
        return None

    def resolve(self, name: str, repo: str | None = None) -> Result[Handle, WorkmuxError]:
        matches = self.find(name, repo)
        if not matches:
            return Err(NotFoundError(f"No worktree found with name '{name}'", context={"handle": name}))
        if len(matches) > 1:
            labels = ", ".join(sorted(handle.repo.name for handle in matches))
            return Err(
                AmbiguousHandleError(
                    f"Handle '{name}' exists in several repositories ({labels}); pass --repo",
                    context={"handle": name},
                )
            )
        return Ok(matches[0])

    def resolve_current(self, cwd: Path) -> Result[Handle, WorkmuxError]:
        """Handle whose worktree contains `cwd` (deepest match wins)."""
        target = cwd.resolve()
        best: Handle | None = None
        for handle in self.handles:
            if handle.worktree_path is None:
                continue
            root = handle.worktree_path.resolve()
            if target == root or root in target.parents:
                if best is None or len(root.parts) > len(best.worktree_path.parts):  # type: ignore[union-attr]
                    best = handle
        if best is None:
            return Err(
                NotFoundError(
                    "Not inside a workmux worktree; pass a handle name", context={"cwd": str(target)}
                )
            )
        return Ok(best)

    def resolve_target(
        self, name: str | None, cwd: Path, repo: str | None = None
    ) -> Result[Handle, WorkmuxError]:
        return self.resolve(name, repo) if name else self.resolve_current(cwd)


def _pane_inside(window: WindowRecord, root: Path) -> bool:
    for raw in window.pane_paths:
        path = Path(raw)
        if path == root or root in path.parents:
            return True
    return False


def join_handles(
    repos: list[tuple[RepoContext, list[WorktreeRecord]]],
    windows: list[WindowRecord],
) -> HandleRegistry:
    """Join worktrees and windows by naming convention.

    A window titled `<prefix><name>` belongs to the worktree whose directory
    is `<name>`. When several windows share that title the lexicographically
    smallest window id wins and the rest become orphans. A title shared by
    handles in more than one repository is settled by pane working
    directories; if that does not single one out the window is an orphan.
    """
    assigned: dict[tuple[Path, str], WindowRecord] = {}
    orphans: list[Orphan] = []
    seen_titles: set[tuple[Path, str]] = set()

    for window in sorted(windows, key=lambda w: w.window_id):
        owners: list[tuple[RepoContext, WorktreeRecord]] = []
        for repo, worktrees in repos:
            base = base_name_from_window(window.title, repo.config)
            if base is None:
                continue
            owners.extend((repo, record) for record in worktrees if record.name == base)

        if not owners:
            for repo, _ in repos:
                base = base_name_from_window(window.title, repo.config)
                if base is not None:
                    orphans.append(Orphan(name=base, window=window, reason="no matching worktree"))
                    break
            continue

        if len(owners) > 1:
            narrowed = [(repo, record) for repo, record in owners if _pane_inside(window, record.path)]
            if len(narrowed) != 1:
                orphans.append(
                    Orphan(
                        name=owners[0][1].name,
                        window=window,
                        reason="title matches worktrees in several repositories",
                    )
                )
                continue
            owners = narrowed

        repo, record = owners[0]
        key = (repo.root, record.name)
        if key in seen_titles:
            orphans.append(Orphan(name=record.name, window=window, reason="duplicate window"))
            continue
        seen_titles.add(key)
        assigned[key] = window

    handles: list[Handle] = []
    for repo, worktrees in repos:
        merge_branch = merging_branch(repo.root)
        for record in worktrees:
            window = assigned.get((repo.root, record.name))
            icon = window.status_icon if window else ""
            handles.append(
                Handle(
                    name=record.name,
                    repo=repo,
                    state=HandleState.BOUND if window else HandleState.WORKTREE_ONLY,
                    worktree_path=record.path,
                    branch=record.branch,
                    window=window,
                    status=AgentStatus.from_icon(icon, repo.config.status_icons),
                    merging=record.operation is not None
                    or (merge_branch is not None and merge_branch == record.branch and not record.is_main),
                    is_main=record.is_main,
                )
            )

    return HandleRegistry(handles=handles, orphans=orphans)


async def build_registry(repos: list[RepoContext], tmux: TmuxClient) -> Result[HandleRegistry, ProbeError]:
    """Probe every repository and the tmux server, then join."""
    probed: list[tuple[RepoContext, list[WorktreeRecord]]] = []
    for repo in repos:
        match await list_worktrees(repo.git()):
            case Err(err):
                return Err(err)
            case Ok(worktrees):
                probed.append((repo, worktrees))

    windows: list[WindowRecord] = []
    match await list_windows(tmux):
        case Err(err) if err.kind in (ProbeErrorKind.NO_SESSION, ProbeErrorKind.MISSING_TOOL):
            logger.debug("No tmux windows available: %s", err)
        case Err(err):
            return Err(err)
        case Ok(found):
            windows = found

    return Ok(join_handles(probed, windows))


__all__ = [
    "AgentStatus",
    "Handle",
    "HandleRegistry",
    "HandleState",
    "Orphan",
    "RepoContext",
    "build_registry",
    "join_handles",
]
