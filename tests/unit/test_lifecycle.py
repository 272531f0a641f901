from __future__ import annotations

from pathlib import Path

import pytest

from tests.mocks.fake_tmux import FakeTmux
from tests.mocks.git_helpers import branches, commit_file, git
from workmux.core.config import (
    MergeStrategy,
    PaneConfig,
    SplitDirection,
    UncommittedPolicy,
    WorkmuxConfig,
)
from workmux.core.result import (
    AlreadyExistsError,
    DirtyWorktreeError,
    Err,
    HookError,
    MergeConflictError,
    NotFoundError,
    Ok,
    PartialFailureError,
    ValidationError,
)
from workmux.workflow.handles import HandleState, RepoContext, build_registry
from workmux.workflow.lifecycle import (
    AddOptions,
    LifecycleEngine,
    MergeOptions,
    RemoveOptions,
)


def _engine(root: Path, tmux: FakeTmux, **overrides: object) -> LifecycleEngine:
    config = WorkmuxConfig(agent_startup_delay=0, **overrides)
    return LifecycleEngine([RepoContext(root=root, config=config)], tmux, cwd=root)  # type: ignore[arg-type]


async def _non_main(engine: LifecycleEngine) -> list[str]:
    registry = (await engine.registry()).unwrap()
    return [handle.name for handle in registry.handles if not handle.is_main]


@pytest.mark.asyncio
async def test_add_then_resolve_yields_bound_handle(
    engine: LifecycleEngine, git_repo: Path, fake_tmux: FakeTmux
) -> None:
    added = (await engine.add("user-auth")).unwrap()

    assert added.created_branch is True
    resolved = (await engine.resolve("user-auth")).unwrap()
    assert resolved.state == HandleState.BOUND
    assert resolved.branch == "user-auth"
    assert resolved.worktree_path == git_repo.parent / "proj__worktrees" / "user-auth"
    assert resolved.worktree_path.is_dir()
    assert resolved.window_id is not None
    assert fake_tmux.window_named("wm-user-auth") is not None
    assert fake_tmux.selected == [resolved.window_id]


@pytest.mark.asyncio
async def test_add_then_remove_leaves_nothing_behind(
    engine: LifecycleEngine, git_repo: Path, fake_tmux: FakeTmux
) -> None:
    (await engine.add("user-auth")).unwrap()

    removed = (await engine.remove("user-auth")).unwrap()

    assert removed.name == "user-auth"
    assert await _non_main(engine) == []
    assert "user-auth" not in branches(git_repo)
    assert fake_tmux.windows == {}
    assert not (git_repo.parent / "proj__worktrees" / "user-auth").exists()


@pytest.mark.asyncio
async def test_fast_forward_merge_cleans_up(
    engine: LifecycleEngine, git_repo: Path, fake_tmux: FakeTmux
) -> None:
    handle = (await engine.add("user-auth")).unwrap().handle
    assert handle.worktree_path is not None
    commit_file(handle.worktree_path, "auth.py", "print('auth')\n", "add auth")

    result = (await engine.merge("user-auth")).unwrap()

    assert result.target == "main"
    assert result.steps.completed == ["merge", "window", "worktree", "branch"]
    assert (git_repo / "auth.py").exists()
    assert await _non_main(engine) == []
    assert "user-auth" not in branches(git_repo)
    assert fake_tmux.windows == {}


@pytest.mark.asyncio
async def test_conflicting_merge_halts_in_merging_state(
    engine: LifecycleEngine, git_repo: Path, fake_tmux: FakeTmux
) -> None:
    handle = (await engine.add("feature")).unwrap().handle
    assert handle.worktree_path is not None
    commit_file(handle.worktree_path, "README.md", "# feature side\n")
    commit_file(git_repo, "README.md", "# main side\n")

    match await engine.merge("feature"):
        case Err(MergeConflictError() as err):
            assert [Path(path).name for path in err.conflicts] == ["README.md"]
        case other:
            pytest.fail(f"expected a merge conflict, got {other!r}")

    registry = (await engine.registry()).unwrap()
    halted = registry.resolve("feature").unwrap()
    assert halted.merging is True
    assert halted.worktree_path is not None and halted.worktree_path.exists()
    assert "feature" in branches(git_repo)
    assert halted.window_id in fake_tmux.windows

    # A second attempt reports the unfinished merge instead of starting over.
    again = await engine.merge("feature")
    assert isinstance(again, Err)
    assert isinstance(again.error, MergeConflictError)


@pytest.mark.asyncio
async def test_merge_resumes_after_conflict_is_resolved(
    engine: LifecycleEngine, git_repo: Path
) -> None:
    handle = (await engine.add("feature")).unwrap().handle
    assert handle.worktree_path is not None
    commit_file(handle.worktree_path, "README.md", "# feature side\n")
    commit_file(git_repo, "README.md", "# main side\n")
    assert isinstance(await engine.merge("feature"), Err)

    (git_repo / "README.md").write_text("# both sides\n", encoding="utf-8")
    git(git_repo, "add", "README.md")
    git(git_repo, "commit", "-q", "--no-edit")

    result = (await engine.merge("feature")).unwrap()
    assert result.branch == "feature"
    assert await _non_main(engine) == []


@pytest.mark.asyncio
async def test_squash_merge_creates_single_commit(
    engine: LifecycleEngine, git_repo: Path
) -> None:
    handle = (await engine.add("squashy")).unwrap().handle
    assert handle.worktree_path is not None
    commit_file(handle.worktree_path, "a.txt", "a\n")
    commit_file(handle.worktree_path, "b.txt", "b\n")
    before = int(git(git_repo, "rev-list", "--count", "HEAD"))

    (await engine.merge("squashy", MergeOptions(strategy=MergeStrategy.SQUASH))).unwrap()

    assert int(git(git_repo, "rev-list", "--count", "HEAD")) == before + 1
    assert (git_repo / "a.txt").exists() and (git_repo / "b.txt").exists()


@pytest.mark.asyncio
async def test_merge_refuses_dirty_worktree(engine: LifecycleEngine) -> None:
    handle = (await engine.add("dirty")).unwrap().handle
    assert handle.worktree_path is not None
    (handle.worktree_path / "scratch.txt").write_text("wip\n", encoding="utf-8")

    result = await engine.merge("dirty")

    assert isinstance(result, Err)
    assert isinstance(result.error, DirtyWorktreeError)
    assert handle.worktree_path.exists()


@pytest.mark.asyncio
async def test_warn_policy_merges_and_keeps_dirty_worktree(
    git_repo: Path, fake_tmux: FakeTmux
) -> None:
    engine = _engine(git_repo, fake_tmux, uncommitted_policy=UncommittedPolicy.WARN)
    handle = (await engine.add("feat")).unwrap().handle
    assert handle.worktree_path is not None
    commit_file(handle.worktree_path, "feat.py", "x = 1\n", "add feat")
    (handle.worktree_path / "scratch.txt").write_text("wip\n", encoding="utf-8")

    result = (await engine.merge("feat")).unwrap()

    assert (git_repo / "feat.py").exists()
    assert result.steps.completed == ["merge", "window"]
    assert len(result.warnings) == 1 and "uncommitted" in result.warnings[0]
    assert (handle.worktree_path / "scratch.txt").exists()
    assert "feat" in branches(git_repo)
    assert fake_tmux.windows == {}
    kept = (await engine.resolve("feat")).unwrap()
    assert kept.state == HandleState.WORKTREE_ONLY


@pytest.mark.asyncio
async def test_merge_cleanup_failure_is_reported_per_step(
    engine: LifecycleEngine, git_repo: Path, fake_tmux: FakeTmux
) -> None:
    handle = (await engine.add("feat")).unwrap().handle
    assert handle.worktree_path is not None
    commit_file(handle.worktree_path, "feat.py", "x = 1\n", "add feat")
    fake_tmux.fail_on.add("kill_window")

    match await engine.merge("feat"):
        case Err(PartialFailureError() as err):
            assert [failure.step for failure in err.failures] == ["window"]
            assert err.completed == ["merge", "worktree", "branch"]
            assert err.state == HandleState.WINDOW_ONLY.value
        case other:
            pytest.fail(f"expected a partial failure, got {other!r}")

    assert (git_repo / "feat.py").exists()
    assert branches(git_repo) == ["main"]
    assert not handle.worktree_path.exists()
    assert handle.window_id in fake_tmux.windows


@pytest.mark.asyncio
async def test_merge_keep_leaves_handle_in_place(
    engine: LifecycleEngine, git_repo: Path
) -> None:
    handle = (await engine.add("keeper")).unwrap().handle
    assert handle.worktree_path is not None
    commit_file(handle.worktree_path, "k.txt", "k\n")

    (await engine.merge("keeper", MergeOptions(keep=True))).unwrap()

    assert (git_repo / "k.txt").exists()
    assert await _non_main(engine) == ["keeper"]


@pytest.mark.asyncio
async def test_failing_pre_merge_hook_aborts_before_merge(
    git_repo: Path, fake_tmux: FakeTmux
) -> None:
    engine = _engine(git_repo, fake_tmux, pre_merge=["exit 3"])
    handle = (await engine.add("hooked")).unwrap().handle
    assert handle.worktree_path is not None
    commit_file(handle.worktree_path, "h.txt", "h\n")

    result = await engine.merge("hooked")

    assert isinstance(result, Err)
    assert isinstance(result.error, HookError)
    assert not (git_repo / "h.txt").exists()


@pytest.mark.asyncio
async def test_add_existing_handle_is_rejected_without_side_effects(
    engine: LifecycleEngine, fake_tmux: FakeTmux
) -> None:
    (await engine.add("user-auth")).unwrap()
    windows_before = dict(fake_tmux.windows)

    result = await engine.add("user-auth")

    assert isinstance(result, Err)
    assert isinstance(result.error, AlreadyExistsError)
    assert fake_tmux.windows == windows_before


@pytest.mark.asyncio
async def test_add_refuses_when_unrelated_window_holds_the_name(
    engine: LifecycleEngine, fake_tmux: FakeTmux, git_repo: Path
) -> None:
    fake_tmux.add_window("wm-ghost", "/somewhere/else")

    result = await engine.add("ghost")

    assert isinstance(result, Err)
    assert isinstance(result.error, AlreadyExistsError)
    assert "ghost" not in branches(git_repo)


@pytest.mark.asyncio
async def test_orphan_window_is_removable_by_name(
    engine: LifecycleEngine, fake_tmux: FakeTmux
) -> None:
    fake_tmux.add_window("wm-ghost")

    removed = (await engine.remove("ghost")).unwrap()

    assert removed.state == HandleState.WINDOW_ONLY
    assert fake_tmux.windows == {}


@pytest.mark.asyncio
async def test_window_failure_leaves_worktree_only_handle(
    engine: LifecycleEngine, fake_tmux: FakeTmux, git_repo: Path
) -> None:
    fake_tmux.fail_on.add("new_window")

    result = await engine.add("half")

    match result:
        case Err(PartialFailureError() as err):
            assert err.state == HandleState.WORKTREE_ONLY.value
            assert err.completed == ["worktree"]
            assert [failure.step for failure in err.failures] == ["window"]
        case other:
            pytest.fail(f"expected a partial failure, got {other!r}")

    fake_tmux.fail_on.clear()
    handle = (await engine.resolve("half")).unwrap()
    assert handle.state == HandleState.WORKTREE_ONLY
    assert "half" in branches(git_repo)


@pytest.mark.asyncio
async def test_failed_split_does_not_leave_half_built_window(
    engine: LifecycleEngine, fake_tmux: FakeTmux
) -> None:
    fake_tmux.fail_on.add("split_window")

    result = await engine.add("split")

    assert isinstance(result, Err)
    assert fake_tmux.windows == {}


@pytest.mark.asyncio
async def test_failing_post_create_hook_still_creates_window(
    git_repo: Path, fake_tmux: FakeTmux
) -> None:
    engine = _engine(git_repo, fake_tmux, post_create=["echo ok", "false"])

    result = await engine.add("hooks")

    match result:
        case Err(PartialFailureError() as err):
            assert err.state == HandleState.BOUND.value
            assert "window" in err.completed
            assert [failure.step for failure in err.failures] == ["post_create"]
        case other:
            pytest.fail(f"expected a partial failure, got {other!r}")
    assert fake_tmux.window_named("wm-hooks") is not None


@pytest.mark.asyncio
async def test_post_create_hook_sees_handle_environment(
    git_repo: Path, fake_tmux: FakeTmux
) -> None:
    engine = _engine(
        git_repo, fake_tmux, post_create=['printf "%s %s" "$WM_HANDLE" "$WM_BRANCH_NAME" > hook.out']
    )

    added = (await engine.add("feature/env")).unwrap()

    assert added.handle.name == "feature-env"
    assert added.hooks_run == 1
    assert added.handle.worktree_path is not None
    assert (added.handle.worktree_path / "hook.out").read_text() == "feature-env feature/env"


@pytest.mark.asyncio
async def test_prompt_without_agent_pane_is_rejected_before_mutation(
    engine: LifecycleEngine, git_repo: Path, fake_tmux: FakeTmux
) -> None:
    result = await engine.add("prompted", AddOptions(prompt="fix the bug"))

    assert isinstance(result, Err)
    assert isinstance(result.error, ValidationError)
    assert not (git_repo.parent / "proj__worktrees" / "prompted").exists()
    assert fake_tmux.windows == {}


@pytest.mark.asyncio
async def test_prompt_is_typed_into_agent_pane(git_repo: Path, fake_tmux: FakeTmux) -> None:
    panes = [
        PaneConfig(command="<agent>", focus=True),
        PaneConfig(command="clear", split=SplitDirection.HORIZONTAL),
    ]
    engine = _engine(git_repo, fake_tmux, panes=panes)

    added = (await engine.add("agentic", AddOptions(prompt="fix the bug"))).unwrap()

    window = fake_tmux.windows[added.handle.window_id or ""]
    agent_pane = fake_tmux.panes[window.pane_ids[0]]
    assert agent_pane.options["@workmux_pane_role"] == "agent"
    assert agent_pane.typed == ["claude", "fix the bug"]


@pytest.mark.asyncio
async def test_remove_refuses_dirty_worktree_unless_forced(
    engine: LifecycleEngine, git_repo: Path
) -> None:
    handle = (await engine.add("messy")).unwrap().handle
    assert handle.worktree_path is not None
    (handle.worktree_path / "wip.txt").write_text("wip\n", encoding="utf-8")

    refused = await engine.remove("messy")
    assert isinstance(refused, Err)
    assert isinstance(refused.error, DirtyWorktreeError)
    assert handle.worktree_path.exists()

    (await engine.remove("messy", RemoveOptions(force=True))).unwrap()
    assert not handle.worktree_path.exists()


@pytest.mark.asyncio
async def test_remove_keep_branch(engine: LifecycleEngine, git_repo: Path) -> None:
    (await engine.add("kept")).unwrap()

    (await engine.remove("kept", RemoveOptions(keep_branch=True))).unwrap()

    assert "kept" in branches(git_repo)


@pytest.mark.asyncio
async def test_remove_main_worktree_is_refused(engine: LifecycleEngine, git_repo: Path) -> None:
    result = await engine.remove("proj")

    assert isinstance(result, Err)
    assert isinstance(result.error, ValidationError)


@pytest.mark.asyncio
async def test_remove_from_inside_the_window_schedules_the_kill(
    engine: LifecycleEngine, fake_tmux: FakeTmux
) -> None:
    handle = (await engine.add("self")).unwrap().handle
    fake_tmux.current_window = handle.window_id

    result = (await engine.remove("self")).unwrap()

    assert "window (scheduled)" in result.steps.completed
    assert fake_tmux.scheduled_kills == [handle.window_id]


@pytest.mark.asyncio
async def test_close_then_open(engine: LifecycleEngine, fake_tmux: FakeTmux) -> None:
    (await engine.add("cycle")).unwrap()

    closed = (await engine.close("cycle")).unwrap()
    assert closed.scheduled is False
    after_close = (await engine.resolve("cycle")).unwrap()
    assert after_close.state == HandleState.WORKTREE_ONLY

    opened = (await engine.open("cycle")).unwrap()
    assert opened.created_window is True
    assert (await engine.resolve("cycle")).unwrap().state == HandleState.BOUND


@pytest.mark.asyncio
async def test_open_existing_window_only_focuses(
    engine: LifecycleEngine, fake_tmux: FakeTmux
) -> None:
    handle = (await engine.add("focus", AddOptions(background=True))).unwrap().handle
    assert fake_tmux.selected == []

    opened = (await engine.open("focus")).unwrap()

    assert opened.created_window is False
    assert fake_tmux.selected == [handle.window_id]


@pytest.mark.asyncio
async def test_close_without_window_is_not_found(engine: LifecycleEngine) -> None:
    (await engine.add("quiet")).unwrap()
    (await engine.close("quiet")).unwrap()

    result = await engine.close("quiet")

    assert isinstance(result, Err)
    assert isinstance(result.error, NotFoundError)


@pytest.mark.asyncio
async def test_existing_branch_is_checked_out_not_created(
    engine: LifecycleEngine, git_repo: Path
) -> None:
    git(git_repo, "branch", "existing")

    added = (await engine.add("existing")).unwrap()

    assert added.created_branch is False
    assert added.handle.branch == "existing"


@pytest.mark.asyncio
async def test_unmerged_commits_counts_branch_only_commits(
    engine: LifecycleEngine,
) -> None:
    handle = (await engine.add("ahead")).unwrap().handle
    assert handle.worktree_path is not None
    commit_file(handle.worktree_path, "x.txt", "x\n")
    commit_file(handle.worktree_path, "y.txt", "y\n")

    assert (await engine.unmerged_commits(handle)).unwrap() == 2


@pytest.mark.asyncio
async def test_registry_round_trips_through_probes(
    engine: LifecycleEngine, fake_tmux: FakeTmux, repo_ctx: RepoContext
) -> None:
    for name in ("alpha", "beta"):
        (await engine.add(name, AddOptions(background=True))).unwrap()

    registry = (await build_registry([repo_ctx], fake_tmux)).unwrap()  # type: ignore[arg-type]

    for handle in registry.handles:
        match registry.resolve(handle.name):
            case Ok(resolved):
                assert resolved == handle
            case Err(err):
                pytest.fail(str(err))
