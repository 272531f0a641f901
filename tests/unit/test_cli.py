from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from tests.mocks.fake_tmux import FakeTmux
from tests.mocks.git_helpers import branches, commit_file, git
from workmux.commands import listing as listing_module
from workmux.core.console import console
from workmux.main import app
from workmux.workflow import repos as repos_module


@pytest.fixture(autouse=True)
def wide_console(monkeypatch: Any) -> None:
    monkeypatch.setattr(console, "width", 200)


@pytest.fixture
def cli_env(git_repo: Path, fake_tmux: FakeTmux, monkeypatch: Any) -> FakeTmux:
    """Run commands from inside the test repository against the in-memory tmux."""
    monkeypatch.chdir(git_repo)
    monkeypatch.setattr(repos_module, "TmuxClient", lambda **_: fake_tmux)
    monkeypatch.setenv("WORKMUX_AGENT_STARTUP_DELAY", "0")
    return fake_tmux


def test_add_list_path_remove(runner: CliRunner, cli_env: FakeTmux, git_repo: Path) -> None:
    added = runner.invoke(app, ["add", "user-auth", "--background"])
    assert added.exit_code == 0, added.output
    assert "Created" in added.output
    assert cli_env.window_named("wm-user-auth") is not None

    listed = runner.invoke(app, ["list"])
    assert listed.exit_code == 0, listed.output
    assert "user-auth" in listed.output
    assert "active" in listed.output

    located = runner.invoke(app, ["path", "user-auth"])
    assert located.output.strip() == str(git_repo.parent / "proj__worktrees" / "user-auth")

    removed = runner.invoke(app, ["remove", "user-auth"])
    assert removed.exit_code == 0, removed.output
    assert cli_env.window_named("wm-user-auth") is None
    assert "user-auth" not in branches(git_repo)


def test_add_count_creates_numbered_handles(runner: CliRunner, cli_env: FakeTmux) -> None:
    result = runner.invoke(app, ["add", "task", "--count", "2"])

    assert result.exit_code == 0, result.output
    assert cli_env.window_named("wm-task-1") is not None
    window = cli_env.window_named("wm-task-2")
    assert window is not None
    assert cli_env.selected == [window.window_id]


def test_list_reports_empty(runner: CliRunner, cli_env: FakeTmux) -> None:
    result = runner.invoke(app, ["list", "--active"])

    assert result.exit_code == 0
    assert "No active worktrees found" in result.output


def test_unknown_handle_exits_non_zero(runner: CliRunner, cli_env: FakeTmux) -> None:
    result = runner.invoke(app, ["close", "ghost"])

    assert result.exit_code == 1
    assert "ghost" in result.output


def test_remove_asks_before_dropping_unmerged_commits(
    runner: CliRunner, cli_env: FakeTmux, git_repo: Path
) -> None:
    assert runner.invoke(app, ["add", "wip", "--background"]).exit_code == 0
    commit_file(git_repo.parent / "proj__worktrees" / "wip", "wip.txt", "x\n")

    declined = runner.invoke(app, ["remove", "wip"], input="n\n")

    assert declined.exit_code == 1
    assert "unmerged commit" in declined.output
    assert "wip" in branches(git_repo)

    accepted = runner.invoke(app, ["remove", "wip"], input="y\n")
    assert accepted.exit_code == 0, accepted.output
    assert "wip" not in branches(git_repo)


def test_merge_rejects_conflicting_strategies(runner: CliRunner, cli_env: FakeTmux) -> None:
    result = runner.invoke(app, ["merge", "x", "--rebase", "--squash"])

    assert result.exit_code == 1
    assert "mutually exclusive" in result.output


def test_merge_command(runner: CliRunner, cli_env: FakeTmux, git_repo: Path) -> None:
    assert runner.invoke(app, ["add", "feat", "--background"]).exit_code == 0
    commit_file(git_repo.parent / "proj__worktrees" / "feat", "feat.txt", "x\n")

    result = runner.invoke(app, ["merge", "feat"])

    assert result.exit_code == 0, result.output
    assert "Merged feat into main" in result.output
    assert (git_repo / "feat.txt").exists()


def test_send_and_capture(runner: CliRunner, cli_env: FakeTmux) -> None:
    assert runner.invoke(app, ["add", "api", "--background"]).exit_code == 0
    window = cli_env.window_named("wm-api")
    assert window is not None
    for pane_id in window.pane_ids[1:]:
        cli_env.panes[pane_id].options["@workmux_pane_role"] = "agent"
    agent = cli_env.panes[window.pane_ids[-1]]

    sent = runner.invoke(app, ["send", "api", "run the tests"])
    assert sent.exit_code == 0, sent.output
    assert agent.typed[-1] == "run the tests"

    captured = runner.invoke(app, ["capture", "api", "-n", "1"])
    assert captured.exit_code == 0, captured.output
    assert captured.output == "run the tests\n"


def test_send_command_rejects_multiline(runner: CliRunner, cli_env: FakeTmux) -> None:
    window = cli_env.add_window("wm-loose")

    result = runner.invoke(
        app, ["send", "--pane-id", window.pane_ids[0], "--command"], input="a\nb\n"
    )

    assert result.exit_code == 1
    assert "single-line" in result.output


def test_set_window_status_outside_tmux_is_a_no_op(runner: CliRunner, cli_env: FakeTmux) -> None:
    result = runner.invoke(app, ["set-window-status", "working"])

    assert result.exit_code == 0
    assert result.output == ""


def test_set_window_status_with_target(runner: CliRunner, cli_env: FakeTmux) -> None:
    window = cli_env.add_window("wm-api")

    result = runner.invoke(app, ["set-window-status", "done", "--target", window.window_id])

    assert result.exit_code == 0, result.output
    assert cli_env.status_of(window.window_id) == "✅"


def test_set_window_status_rejected_by_tmux_still_exits_zero(
    runner: CliRunner, cli_env: FakeTmux
) -> None:
    result = runner.invoke(app, ["set-window-status", "working", "--target", "@999"])

    assert result.exit_code == 0, result.output
    assert cli_env.windows == {}


def test_dashboard_survives_a_failed_poll(
    runner: CliRunner, cli_env: FakeTmux, monkeypatch: Any
) -> None:
    cli_env.add_window("wm-stray")
    titles: list[str] = []
    ticks: list[int] = []
    real_render = listing_module._render

    def recording_render(rows: Any, **kwargs: Any) -> Any:
        titles.append(kwargs.get("title") or "")
        return real_render(rows, **kwargs)

    def fake_sleep(_: float) -> None:
        ticks.append(len(ticks) + 1)
        if len(ticks) == 1:
            cli_env.fail_on.add("list_windows")
        elif len(ticks) == 2:
            cli_env.fail_on.clear()
        else:
            raise KeyboardInterrupt

    monkeypatch.setattr(listing_module, "_render", recording_render)
    monkeypatch.setattr(listing_module.time, "sleep", fake_sleep)

    result = runner.invoke(app, ["dashboard"])

    assert result.exit_code == 0, result.output
    assert len(ticks) == 3
    assert len(titles) == 3
    assert "list_windows failed" in titles[1]
    assert "failed" not in titles[2]
    assert "Dashboard stopped." in result.output
    assert "stray" in result.output


def test_completion_lists_handles_and_branches(
    runner: CliRunner, cli_env: FakeTmux, git_repo: Path
) -> None:
    git(git_repo, "branch", "feature/x")
    assert runner.invoke(app, ["add", "api", "--background"]).exit_code == 0

    handles = runner.invoke(app, ["__complete-handles"])
    assert handles.output.split() == ["api"]

    branch_names = runner.invoke(app, ["__complete-git-branches"])
    assert branch_names.output.split() == ["api", "feature/x", "main"]


def test_completion_is_silent_outside_repo(runner: CliRunner, tmp_path: Path, monkeypatch: Any) -> None:
    plain = tmp_path / "plain"
    plain.mkdir()
    monkeypatch.chdir(plain)

    result = runner.invoke(app, ["__complete-handles"])

    assert result.exit_code == 0
    assert result.output == ""


def test_init_writes_project_file_once(runner: CliRunner, cli_env: FakeTmux, git_repo: Path) -> None:
    first = runner.invoke(app, ["init"])
    assert first.exit_code == 0, first.output
    assert (git_repo / ".workmux.yaml").exists()

    second = runner.invoke(app, ["init"])
    assert second.exit_code == 1
    assert "already exists" in second.output


def test_claude_prune(runner: CliRunner, tmp_path: Path, monkeypatch: Any) -> None:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    state = home / ".claude.json"
    state.write_text(json.dumps({"projects": {str(tmp_path / "gone"): {}}}), encoding="utf-8")

    result = runner.invoke(app, ["claude", "prune"])

    assert result.exit_code == 0, result.output
    assert "Pruned 1 of 1" in result.output
    assert (home / ".claude.json.bak").exists()
