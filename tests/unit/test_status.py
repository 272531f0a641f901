from __future__ import annotations

import asyncio

import pytest

from tests.mocks.fake_tmux import FakeTmux
from workmux.core.config import StatusIcons
from workmux.core.result import Ok
from workmux.workflow.status import StatusEvent, StatusKind, StatusTracker, TmuxAnnotationStore

ICONS = StatusIcons()


def _tracker(tmux: FakeTmux, *, status_format: bool = True) -> StatusTracker:
    return StatusTracker(TmuxAnnotationStore(tmux), ICONS, status_format=status_format)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_working_and_waiting_write_icons(fake_tmux: FakeTmux) -> None:
    window = fake_tmux.add_window("wm-api")
    tracker = _tracker(fake_tmux)

    assert await tracker.handle(StatusEvent(window.window_id, StatusKind.WORKING)) == Ok(None)
    assert fake_tmux.status_of(window.window_id) == ICONS.working

    await tracker.handle(StatusEvent(window.window_id, StatusKind.WAITING))
    assert fake_tmux.status_of(window.window_id) == ICONS.waiting


@pytest.mark.asyncio
async def test_done_clears_on_next_focus(fake_tmux: FakeTmux) -> None:
    window = fake_tmux.add_window("wm-api")
    tracker = _tracker(fake_tmux)

    await tracker.handle(StatusEvent(window.window_id, StatusKind.DONE))
    assert fake_tmux.status_of(window.window_id) == ICONS.done

    fake_tmux.simulate_focus(window.window_id)
    assert fake_tmux.status_of(window.window_id) is None


@pytest.mark.asyncio
async def test_newer_status_survives_focus_after_done(fake_tmux: FakeTmux) -> None:
    window = fake_tmux.add_window("wm-api")
    tracker = _tracker(fake_tmux)

    await tracker.handle(StatusEvent(window.window_id, StatusKind.DONE))
    await tracker.handle(StatusEvent(window.window_id, StatusKind.WORKING))
    fake_tmux.simulate_focus(window.window_id)

    assert fake_tmux.status_of(window.window_id) == ICONS.working


@pytest.mark.asyncio
async def test_clear_removes_annotation(fake_tmux: FakeTmux) -> None:
    window = fake_tmux.add_window("wm-api")
    tracker = _tracker(fake_tmux)

    await tracker.handle(StatusEvent(window.window_id, StatusKind.WAITING))
    await tracker.handle(StatusEvent(window.window_id, StatusKind.CLEAR))

    assert fake_tmux.status_of(window.window_id) is None


@pytest.mark.asyncio
async def test_status_format_is_amended_once(fake_tmux: FakeTmux) -> None:
    window = fake_tmux.add_window("wm-api")
    tracker = _tracker(fake_tmux)

    await tracker.handle(StatusEvent(window.window_id, StatusKind.WORKING))
    await tracker.handle(StatusEvent(window.window_id, StatusKind.WORKING))

    fmt = fake_tmux.windows[window.window_id].options["window-status-format"]
    assert fmt.count("#{@workmux_status}") == 1


@pytest.mark.asyncio
async def test_status_format_left_alone_when_disabled(fake_tmux: FakeTmux) -> None:
    window = fake_tmux.add_window("wm-api")

    await _tracker(fake_tmux, status_format=False).handle(StatusEvent(window.window_id, StatusKind.WORKING))

    assert "window-status-format" not in fake_tmux.windows[window.window_id].options


@pytest.mark.asyncio
async def test_consume_applies_events_in_order(fake_tmux: FakeTmux) -> None:
    window = fake_tmux.add_window("wm-api")
    queue: asyncio.Queue[StatusEvent | None] = asyncio.Queue()
    for kind in (StatusKind.WORKING, StatusKind.WAITING, StatusKind.DONE):
        queue.put_nowait(StatusEvent(window.window_id, kind))
    queue.put_nowait(StatusEvent("@999", StatusKind.WORKING))
    queue.put_nowait(None)

    handled = await _tracker(fake_tmux).consume(queue)

    assert handled == 3
    assert fake_tmux.status_of(window.window_id) == ICONS.done
