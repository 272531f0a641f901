from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from workmux.core.process import CommandResult
from workmux.core.result import Err, Ok, ProbeErrorKind
from workmux.tmux import TmuxClient, focus_clear_hook, status_format
from workmux.tmux import client as tmux_module
from workmux.tmux.client import _parse_panes, _parse_windows


class Recorder:
    """Stands in for run_command and replays canned tmux replies."""

    def __init__(self, replies: list[CommandResult] | None = None) -> None:
        self.calls: list[tuple[list[str], bytes | None]] = []
        self.replies = list(replies or [])

    async def __call__(self, tokens: list[str], *, stdin: bytes | None = None, **_: Any):
        self.calls.append((tokens, stdin))
        if self.replies:
            return Ok(self.replies.pop(0))
        return Ok(CommandResult(returncode=0, stdout="", stderr=""))


@pytest.fixture
def recorder(monkeypatch: Any) -> Recorder:
    rec = Recorder()
    monkeypatch.setattr(tmux_module, "run_command", rec)
    return rec


def test_parse_windows_skips_short_lines() -> None:
    output = "main\t@1\twm-api\t🤖\nmain\t@2\twm-docs\t\nbroken\n"

    windows = _parse_windows(output)

    assert [(w.window_id, w.name, w.status) for w in windows] == [
        ("@1", "wm-api", "🤖"),
        ("@2", "wm-docs", ""),
    ]


def test_parse_panes_reads_role() -> None:
    output = "%1\t@1\twm-api\tmain\tclaude\t/src/api\tagent\n%2\t@1\twm-api\tmain\tzsh\t/src/api\t\n"

    panes = _parse_panes(output)

    assert panes[0].role == "agent"
    assert panes[1].current_command == "zsh"
    assert panes[1].role == ""


def test_status_format_is_idempotent() -> None:
    once = status_format("#I:#W")

    assert once != "#I:#W"
    assert status_format(once) == once


def test_focus_hook_compares_against_icon() -> None:
    hook = focus_clear_hook("✅")

    assert "#{==:#{@workmux_status},✅}" in hook
    assert "set-option -uw @workmux_status" in hook


@pytest.mark.asyncio
async def test_socket_and_session_scope_commands(recorder: Recorder) -> None:
    client = TmuxClient(socket="/tmp/wm.sock", session="work")

    await client.list_windows()

    tokens, _ = recorder.calls[0]
    assert tokens[:3] == ["tmux", "-S", "/tmp/wm.sock"]
    assert tokens[-2:] == ["-t", "work"]


@pytest.mark.asyncio
async def test_new_window_returns_ids(recorder: Recorder) -> None:
    recorder.replies.append(CommandResult(returncode=0, stdout="@5\t%9\n", stderr=""))

    result = await TmuxClient().new_window("wm-api", Path("/src/api"))

    assert result == Ok(("@5", "%9"))
    tokens, _ = recorder.calls[0]
    assert "-d" in tokens and tokens[-4:] == ["-n", "wm-api", "-c", "/src/api"]


@pytest.mark.asyncio
async def test_send_keys_is_literal_then_enter(recorder: Recorder) -> None:
    await TmuxClient().send_keys("%1", "echo hi", enter=True)

    assert [tokens[1:] for tokens, _ in recorder.calls] == [
        ["send-keys", "-t", "%1", "-l", "echo hi"],
        ["send-keys", "-t", "%1", "Enter"],
    ]


@pytest.mark.asyncio
async def test_paste_goes_through_named_buffer(recorder: Recorder) -> None:
    await TmuxClient().paste_text("%3", "a\nb")

    (load, stdin), (paste, _) = recorder.calls
    assert load[1:4] == ["load-buffer", "-b", "workmux-3"]
    assert stdin == b"a\nb"
    assert paste[1:] == ["paste-buffer", "-p", "-d", "-b", "workmux-3", "-t", "%3"]


@pytest.mark.asyncio
async def test_missing_server_is_no_session(recorder: Recorder) -> None:
    recorder.replies.append(
        CommandResult(returncode=1, stdout="", stderr="no server running on /tmp/tmux-0/default")
    )

    result = await TmuxClient().list_windows()

    assert isinstance(result, Err)
    assert result.error.kind == ProbeErrorKind.NO_SESSION


@pytest.mark.asyncio
async def test_ensure_status_format_falls_back_to_global(recorder: Recorder) -> None:
    recorder.replies.extend(
        [
            CommandResult(returncode=0, stdout="", stderr=""),
            CommandResult(returncode=0, stdout="#I:#W#F\n", stderr=""),
            CommandResult(returncode=0, stdout="", stderr=""),
            CommandResult(returncode=0, stdout=status_format("#I:#W") + "\n", stderr=""),
        ]
    )

    assert (await TmuxClient().ensure_status_format("@1")).is_ok()

    commands = [tokens[1:] for tokens, _ in recorder.calls]
    assert commands[1] == ["show-options", "-gwv", "window-status-format"]
    assert commands[2] == [
        "set-option",
        "-w",
        "-t",
        "@1",
        "window-status-format",
        status_format("#I:#W#F"),
    ]
    # The current-window format already carries the annotation, so nothing is written.
    assert len(commands) == 4
