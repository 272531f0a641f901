from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

# Detect CI environment (GitHub Actions sets CI=true)
IS_CI = os.environ.get("CI", "").lower() == "true"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "local_only: marks tests that require local environment (skip in CI)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip local_only tests when running in CI."""
    if not IS_CI:
        return
    skip_ci = pytest.mark.skip(reason="Skipped in CI (requires local environment)")
    for item in items:
        if "local_only" in item.keywords:
            item.add_marker(skip_ci)


ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from tests.mocks.fake_tmux import FakeTmux  # noqa: E402
from tests.mocks.git_helpers import commit_file, git  # noqa: E402
from workmux.core.config import WorkmuxConfig  # noqa: E402
from workmux.workflow.handles import RepoContext  # noqa: E402
from workmux.workflow.lifecycle import LifecycleEngine  # noqa: E402


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def isolate_config(tmp_path: Path, monkeypatch: Any) -> Path:
    """Point config to a temp path and leave tmux so tests don't touch user state."""
    cfg_path = tmp_path / "config.yaml"
    monkeypatch.setenv("WORKMUX_CONFIG", str(cfg_path))
    monkeypatch.delenv("TMUX", raising=False)
    monkeypatch.delenv("TMUX_PANE", raising=False)
    for key in list(os.environ):
        if key.startswith("WORKMUX_") and key != "WORKMUX_CONFIG":
            monkeypatch.delenv(key, raising=False)
    return cfg_path


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A throw-away repository `proj` on branch main with one commit."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    repo = (tmp_path / "proj").resolve()
    repo.mkdir()
    git(repo, "init", "-q", "-b", "main")
    git(repo, "config", "user.name", "Workmux Tests")
    git(repo, "config", "user.email", "tests@example.com")
    git(repo, "config", "commit.gpgsign", "false")
    commit_file(repo, "README.md", "# proj\n", "initial commit")
    return repo


@pytest.fixture
def fake_tmux() -> FakeTmux:
    return FakeTmux()


@pytest.fixture
def test_config() -> WorkmuxConfig:
    return WorkmuxConfig(agent_startup_delay=0)


@pytest.fixture
def repo_ctx(git_repo: Path, test_config: WorkmuxConfig) -> RepoContext:
    return RepoContext(root=git_repo, config=test_config)


@pytest.fixture
def engine(repo_ctx: RepoContext, fake_tmux: FakeTmux) -> LifecycleEngine:
    return LifecycleEngine([repo_ctx], fake_tmux, cwd=repo_ctx.root)  # type: ignore[arg-type]
