"""Row data for `workmux list` and the dashboard."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from workmux.github import PrSummary
from workmux.workflow.handles import AgentStatus, Handle, HandleRegistry, Orphan


class RowState:
    ACTIVE = "active"
    INACTIVE = "inactive"
    MERGING = "merging"
    ORPHAN = "orphan"


@dataclass(frozen=True)
class HandleRow:
    repo: str
    handle: str
    branch: str
    state: str
    status: str
    pr: str
    tmux: str
    path: str
    is_main: bool = False


def format_path(path: Path | None, home: Path | None = None) -> str:
    if path is None:
        return "-"
    home_dir = home or Path.home()
    try:
        stripped = path.relative_to(home_dir)
    except ValueError:
        return str(path)
    return "~" if not stripped.parts else f"~/{stripped.as_posix()}"


def _state(handle: Handle) -> str:
    if handle.merging:
        return RowState.MERGING
    return RowState.ACTIVE if handle.has_window else RowState.INACTIVE


def _status(handle: Handle) -> str:
    if handle.status == AgentStatus.NONE:
        return "-"
    icon = getattr(handle.repo.config.status_icons, handle.status.value)
    return f"{icon} {handle.status.value}"


def handle_row(handle: Handle, pr: PrSummary | None = None, *, home: Path | None = None) -> HandleRow:
    return HandleRow(
        repo=handle.repo.name,
        handle=handle.name,
        branch=handle.branch or "(detached)",
        state=_state(handle),
        status=_status(handle),
        pr=pr.label() if pr else "-",
        tmux="1" if handle.has_window else "0",
        path=format_path(handle.worktree_path, home),
        is_main=handle.is_main,
    )


def orphan_row(orphan: Orphan) -> HandleRow:
    return HandleRow(
        repo="-",
        handle=orphan.name,
        branch="-",
        state=RowState.ORPHAN,
        status=orphan.reason,
        pr="-",
        tmux="1",
        path=orphan.window.window_id,
    )


def build_rows(
    registry: HandleRegistry,
    *,
    prs: dict[Path, dict[str, PrSummary]] | None = None,
    active_only: bool = False,
    include_orphans: bool = False,
    home: Path | None = None,
) -> list[HandleRow]:
    rows: list[HandleRow] = []
    for handle in registry.handles:
        if active_only and not handle.has_window:
            continue
        repo_prs = (prs or {}).get(handle.repo.root, {})
        pr = repo_prs.get(handle.branch) if handle.branch and not handle.is_main else None
        rows.append(handle_row(handle, pr, home=home))
    if include_orphans:
        rows.extend(orphan_row(orphan) for orphan in registry.orphans)
    return rows


__all__ = ["HandleRow", "RowState", "build_rows", "format_path", "handle_row", "orphan_row"]
