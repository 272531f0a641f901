"""Status tracker for agent lifecycle events.

Events arrive from agent hooks (`workmux set-window-status ...`) at any time
and in any order relative to lifecycle commands. The tracker only touches
the per-window annotation; it never reads or changes worktrees or branches.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from workmux.core.config import StatusIcons
from workmux.core.result import Err, Ok, ProbeError, Result
from workmux.tmux import FOCUS_HOOK, STATUS_OPTION, TmuxClient, focus_clear_hook

logger = logging.getLogger(__name__)


class StatusKind(StrEnum):
    WORKING = "working"
    WAITING = "waiting"
    DONE = "done"
    CLEAR = "clear"


@dataclass(frozen=True)
class StatusEvent:
    target: str
    kind: StatusKind


class AnnotationStore(Protocol):
    async def write(self, target: str, icon: str) -> Result[None, ProbeError]: ...

    async def clear(self, target: str) -> Result[None, ProbeError]: ...

    async def clear_on_focus(self, target: str, icon: str) -> Result[None, ProbeError]: ...

    async def ensure_format(self, target: str) -> Result[None, ProbeError]: ...


class TmuxAnnotationStore:
    """Annotation kept as the `@workmux_status` window option of the tmux server."""

    def __init__(self, tmux: TmuxClient) -> None:
        self.tmux = tmux

    async def write(self, target: str, icon: str) -> Result[None, ProbeError]:
        return await self.tmux.set_window_option(target, STATUS_OPTION, icon)

    async def clear(self, target: str) -> Result[None, ProbeError]:
        return await self.tmux.unset_window_option(target, STATUS_OPTION)

    async def clear_on_focus(self, target: str, icon: str) -> Result[None, ProbeError]:
        return await self.tmux.set_hook(target, FOCUS_HOOK, focus_clear_hook(icon))

    async def ensure_format(self, target: str) -> Result[None, ProbeError]:
        return await self.tmux.ensure_status_format(target)


class StatusTracker:
    def __init__(self, store: AnnotationStore, icons: StatusIcons, *, status_format: bool = True) -> None:
        self.store = store
        self.icons = icons
        self.status_format = status_format

    async def handle(self, event: StatusEvent) -> Result[None, ProbeError]:
        if event.kind == StatusKind.CLEAR:
            return await self.store.clear(event.target)

        if self.status_format:
            match await self.store.ensure_format(event.target):
                case Err(err):
                    logger.debug("Could not amend window status format: %s", err)
                case Ok(_):
                    pass

        icon = getattr(self.icons, event.kind.value)
        match await self.store.write(event.target, icon):
            case Err(err):
                return Err(err)
            case Ok(_):
                pass

        if event.kind == StatusKind.DONE:
            return await self.store.clear_on_focus(event.target, icon)
        return Ok(None)

    async def consume(self, queue: asyncio.Queue[StatusEvent | None]) -> int:
        """Apply events in arrival order until a `None` sentinel; return how many were handled."""
        handled = 0
        while True:
            event = await queue.get()
            try:
                if event is None:
                    return handled
                match await self.handle(event):
                    case Err(err):
                        logger.warning("Status update for %s failed: %s", event.target, err)
                    case Ok(_):
                        handled += 1
            finally:
                queue.task_done()


__all__ = ["AnnotationStore", "StatusEvent", "StatusKind", "StatusTracker", "TmuxAnnotationStore"]
