from __future__ import annotations

import json
from pathlib import Path

from workmux.workflow.prune import prune_claude_projects


def _write(path: Path, projects: dict) -> None:
    path.write_text(json.dumps({"numStartups": 3, "projects": projects}), encoding="utf-8")


def test_stale_absolute_entries_are_removed_with_backup(tmp_path: Path) -> None:
    alive = tmp_path / "alive"
    alive.mkdir()
    stale = tmp_path / "gone"
    state = tmp_path / ".claude.json"
    _write(state, {str(alive): {"a": 1}, str(stale): {"b": 2}, "relative/dir": {}})
    original = state.read_text(encoding="utf-8")

    report = prune_claude_projects(state).unwrap()

    assert report.total == 3
    assert report.removed == [str(stale)]
    assert report.backup == tmp_path / ".claude.json.bak"
    assert report.backup.read_text(encoding="utf-8") == original
    data = json.loads(state.read_text(encoding="utf-8"))
    assert set(data["projects"]) == {str(alive), "relative/dir"}
    assert data["numStartups"] == 3


def test_nothing_written_when_nothing_is_stale(tmp_path: Path) -> None:
    state = tmp_path / ".claude.json"
    _write(state, {str(tmp_path): {}})
    before = state.read_text(encoding="utf-8")

    report = prune_claude_projects(state).unwrap()

    assert report.removed == []
    assert report.backup is None
    assert state.read_text(encoding="utf-8") == before
    assert not (tmp_path / ".claude.json.bak").exists()


def test_missing_file_and_missing_projects(tmp_path: Path) -> None:
    assert prune_claude_projects(tmp_path / "absent.json").unwrap().found is False

    state = tmp_path / ".claude.json"
    state.write_text("{}", encoding="utf-8")
    assert prune_claude_projects(state).unwrap().has_projects is False


def test_unreadable_json_is_an_error(tmp_path: Path) -> None:
    state = tmp_path / ".claude.json"
    state.write_text("{not json", encoding="utf-8")

    assert prune_claude_projects(state).is_err()
