"""Lifecycle engine: add, open, merge, remove and close handles.

Each operation rebuilds the registry first, validates before touching
anything, then runs its steps in order. Once an external mutation has
committed, later failures are collected in a `StepLog` and returned as a
`PartialFailureError` naming the completed steps and the resulting state;
nothing is rolled back automatically.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

from workmux.core.config import MergeStrategy, UncommittedPolicy
from workmux.core.result import (
    AlreadyExistsError,
    DirtyWorktreeError,
    Err,
    MergeConflictError,
    NotFoundError,
    Ok,
    PartialFailureError,
    ProbeError,
    Result,
    StepLog,
    ValidationError,
    WorkmuxError,
)
from workmux.git import find_repo_root, operation_in_progress
from workmux.tmux import TmuxClient
from workmux.workflow.handles import (
    Handle,
    HandleRegistry,
    HandleState,
    RepoContext,
    build_registry,
)
from workmux.workflow.layout import WindowLayout, create_window, has_agent_pane
from workmux.workflow.naming import derive_handle, window_name, worktree_path
from workmux.workflow.panes import PaneBridge
from workmux.workflow.probes import WindowRecord
from workmux.workflow.setup import apply_file_ops, hook_env, run_hooks

logger = logging.getLogger(__name__)


@dataclass
class AddOptions:
    base: str | None = None
    name: str | None = None
    prompt: str | None = None
    background: bool = False
    run_hooks: bool = True
    run_files: bool = True


@dataclass
class OpenOptions:
    prompt: str | None = None
    background: bool = False
    run_hooks: bool = False
    run_files: bool = False


@dataclass
class MergeOptions:
    strategy: MergeStrategy | None = None
    into: str | None = None
    ignore_uncommitted: bool = False
    keep: bool = False
    run_hooks: bool = True


@dataclass
class RemoveOptions:
    force: bool = False
    keep_branch: bool = False
    run_hooks: bool = True


@dataclass
class AddResult:
    handle: Handle
    created_branch: bool
    hooks_run: int
    steps: StepLog


@dataclass
class OpenResult:
    handle: Handle
    created_window: bool
    steps: StepLog


@dataclass
class MergeResult:
    name: str
    branch: str
    target: str
    strategy: MergeStrategy
    commit: str | None
    steps: StepLog
    warnings: list[str] = field(default_factory=list)


@dataclass
class RemoveResult:
    name: str
    branch: str | None
    state: HandleState
    steps: StepLog


@dataclass
class CloseResult:
    name: str
    window_id: str
    scheduled: bool


def _partial(
    message: str, steps: StepLog, state: str, warnings: list[str] | None = None
) -> PartialFailureError:
    return PartialFailureError(
        message,
        failures=steps.failures,
        completed=steps.completed,
        state=state,
        warnings=warnings,
    )


class LifecycleEngine:
    """Drives multi-step transitions over git and tmux for a set of repositories."""

    def __init__(self, repos: list[RepoContext], tmux: TmuxClient, *, cwd: Path) -> None:
        self.repos = repos
        self.tmux = tmux
        self.cwd = cwd.resolve()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def registry(self) -> Result[HandleRegistry, WorkmuxError]:
        match await build_registry(self.repos, self.tmux):
            case Ok(registry):
                return Ok(registry)
            case Err(err):
                return Err(err)

    async def resolve(
        self, name: str | None, repo: str | None = None
    ) -> Result[Handle, WorkmuxError]:
        match await self.registry():
            case Err(err):
                return Err(err)
            case Ok(registry):
                return registry.resolve_target(name, self.cwd, repo)

    def target_repo(self) -> Result[RepoContext, WorkmuxError]:
        """Repository new handles are created in: the one containing cwd, else the only one."""
        current = find_repo_root(self.cwd)
        for repo in self.repos:
            if repo.root == current:
                return Ok(repo)
        if len(self.repos) == 1:
            return Ok(self.repos[0])
        if not self.repos:
            return Err(NotFoundError("No git repository found", context={"cwd": str(self.cwd)}))
        return Err(
            ValidationError("Several repositories are configured; pass --repo to choose one")
        )

    async def _focus(self, window_id: str) -> None:
        match await self.tmux.select_window(window_id):
            case Err(err):
                logger.warning("Could not select window %s: %s", window_id, err)
                return
            case Ok(_):
                pass
        if self.tmux.inside_tmux():
            match await self.tmux.switch_client(window_id):
                case Err(err):
                    logger.debug("switch-client to %s failed: %s", window_id, err)
                case Ok(_):
                    pass

    async def _inject_prompt(
        self, repo: RepoContext, layout: WindowLayout, prompt: str, steps: StepLog
    ) -> None:
        if layout.agent_pane is None:
            steps.failed("prompt", ValidationError("Window has no agent pane for the prompt"))
            return
        if repo.config.agent_startup_delay:
            await asyncio.sleep(repo.config.agent_startup_delay)
        bridge = PaneBridge(self.tmux, repo.config.agent)
        match await bridge.send(layout.agent_pane, prompt, enter=True):
            case Err(err):
                steps.failed("prompt", err)
            case Ok(_):
                steps.done("prompt")

    async def _prepare(
        self,
        repo: RepoContext,
        name: str,
        path: Path,
        branch: str | None,
        steps: StepLog,
        *,
        run_files: bool,
        run_hooks_: bool,
    ) -> int:
        """Copy/symlink files and run post_create hooks; failures are recorded, not raised."""
        config = repo.config
        if run_files:
            match await apply_file_ops(repo.root, path, config.files):
                case Err(err):
                    steps.failed("files", err)
                case Ok(created):
                    if created:
                        steps.done("files")
        hooks_run = 0
        if run_hooks_ and config.post_create:
            env = hook_env(handle=name, worktree=path, project_root=repo.root, branch=branch)
            match await run_hooks(
                "post_create", config.post_create, cwd=path, env=env, timeout=config.hook_timeout
            ):
                case Err(err):
                    steps.failed("post_create", err)
                case Ok(count):
                    hooks_run = count
                    steps.done("post_create")
        return hooks_run

    async def _open_window(
        self, repo: RepoContext, name: str, path: Path, steps: StepLog
    ) -> Result[WindowLayout, ProbeError]:
        config = repo.config
        match await create_window(
            self.tmux,
            title=window_name(name, config),
            cwd=path,
            panes=config.effective_panes(),
            agent=config.agent,
        ):
            case Err(err):
                steps.failed("window", err)
                return Err(err)
            case Ok(layout):
                steps.done("window")
                return Ok(layout)

    async def _kill_window(self, window_id: str, current: str | None) -> Result[bool, ProbeError]:
        """Kill a window; the kill is scheduled (returns True) when it hosts this process."""
        if window_id == current:
            return (await self.tmux.schedule_kill_window(window_id)).map(lambda _: True)
        return (await self.tmux.kill_window(window_id)).map(lambda _: False)

    async def _cleanup(
        self,
        handle: Handle,
        steps: StepLog,
        *,
        force: bool,
        keep_branch: bool,
        keep_worktree: bool = False,
    ) -> None:
        """Window, then worktree, then branch; each failure is recorded and the rest still run.

        A kept worktree keeps its branch too, since git refuses to delete a checked-out branch.
        """
        current = await self.tmux.current_window_id()
        if handle.window_id:
            match await self._kill_window(handle.window_id, current):
                case Err(err):
                    logger.warning("Failed to close window for %s: %s", handle.name, err)
                    steps.failed("window", err)
                case Ok(scheduled):
                    steps.done("window (scheduled)" if scheduled else "window")

        if keep_worktree:
            return

        git = handle.repo.git()
        if handle.worktree_path is not None:
            match await git.worktree_remove(handle.worktree_path, force=force):
                case Err(err):
                    logger.warning("Failed to remove worktree %s: %s", handle.worktree_path, err)
                    steps.failed("worktree", err)
                case Ok(_):
                    steps.done("worktree")
                    match await git.worktree_prune():
                        case Err(err):
                            logger.debug("worktree prune failed: %s", err)
                        case Ok(_):
                            pass

        if handle.branch and not keep_branch:
            match await git.delete_branch(handle.branch, force=True):
                case Err(err):
                    logger.warning("Failed to delete branch %s: %s", handle.branch, err)
                    steps.failed("branch", err)
                case Ok(_):
                    steps.done("branch")

    @staticmethod
    def _state_after_cleanup(steps: StepLog) -> str:
        failed = {failure.step for failure in steps.failures}
        if "worktree" in failed:
            if "window" in failed:
                return HandleState.BOUND.value
            return HandleState.WORKTREE_ONLY.value
        if "window" in failed:
            return HandleState.WINDOW_ONLY.value
        return "absent"

    # -------------------------------------------------------------------------
    # add
    # -------------------------------------------------------------------------

    async def add(
        self, branch: str, options: AddOptions | None = None
    ) -> Result[AddResult, WorkmuxError]:
        opts = options or AddOptions()
        match self.target_repo():
            case Err(err):
                return Err(err)
            case Ok(repo):
                pass
        config = repo.config

        name = derive_handle(branch, config, opts.name)
        if not name or not branch.strip():
            return Err(ValidationError(f"Cannot derive a handle name from '{branch}'"))
        if opts.prompt is not None and not opts.prompt.strip():
            return Err(ValidationError("Prompt is empty"))
        if opts.prompt and not has_agent_pane(config.effective_panes(), config.agent):
            return Err(ValidationError("A prompt was given but the pane layout has no agent pane"))

        match await self.registry():
            case Err(err):
                return Err(err)
            case Ok(registry):
                pass

        if registry.find(name, str(repo.root)):
            return Err(
                AlreadyExistsError(
                    f"A worktree named '{name}' already exists", context={"handle": name}
                )
            )
        orphan = registry.orphan(name)
        if orphan is not None:
            return Err(
                AlreadyExistsError(
                    f"A window named '{orphan.window.title}' already exists ({orphan.reason}); "
                    f"run `workmux remove {name}` first",
                    context={"window": orphan.window.window_id},
                )
            )
        for existing in registry.handles:
            if existing.repo.root == repo.root and existing.branch == branch:
                return Err(
                    AlreadyExistsError(
                        f"Branch '{branch}' is already checked out in {existing.worktree_path}",
                        context={"handle": existing.name},
                    )
                )

        path = worktree_path(repo.root, name, config)
        if path.exists():
            return Err(
                AlreadyExistsError(f"Worktree path already exists: {path}", context={"handle": name})
            )

        git = repo.git()
        match await git.branch_exists(branch):
            case Err(err):
                return Err(err)
            case Ok(exists):
                new_branch = not exists

        start_point = opts.base
        if not new_branch and opts.base:
            logger.warning("Branch '%s' already exists; ignoring --base %s", branch, opts.base)
            start_point = None
        elif new_branch and start_point is None and find_repo_root(self.cwd) == repo.root:
            match await git.current_branch(self.cwd):
                case Ok(current) if current:
                    start_point = current
                case _:
                    pass

        steps = StepLog()
        logger.debug(
            "Creating worktree %s for %s (new=%s, base=%s)", path, branch, new_branch, start_point
        )
        match await git.worktree_add(path, branch, new_branch=new_branch, start_point=start_point):
            case Err(err):
                return Err(err)
            case Ok(created):
                path = created
                steps.done("worktree")

        hooks_run = await self._prepare(
            repo, name, path, branch, steps, run_files=opts.run_files, run_hooks_=opts.run_hooks
        )

        match await self._open_window(repo, name, path, steps):
            case Err(_):
                return Err(
                    _partial(
                        f"Created worktree '{name}' but not its window",
                        steps,
                        HandleState.WORKTREE_ONLY.value,
                    )
                )
            case Ok(layout):
                pass

        if opts.prompt:
            await self._inject_prompt(repo, layout, opts.prompt, steps)
        if not opts.background:
            await self._focus(layout.window_id)

        handle = Handle(
            name=name,
            repo=repo,
            state=HandleState.BOUND,
            worktree_path=path,
            branch=branch,
            window=WindowRecord(
                window_id=layout.window_id,
                title=window_name(name, config),
                pane_ids=tuple(layout.pane_ids),
            ),
        )
        if not steps.ok:
            return Err(_partial(f"Created '{name}' with errors", steps, HandleState.BOUND.value))
        return Ok(
            AddResult(handle=handle, created_branch=new_branch, hooks_run=hooks_run, steps=steps)
        )

    # -------------------------------------------------------------------------
    # open
    # -------------------------------------------------------------------------

    async def open(
        self, name: str | None, options: OpenOptions | None = None, *, repo: str | None = None
    ) -> Result[OpenResult, WorkmuxError]:
        opts = options or OpenOptions()
        match await self.resolve(name, repo):
            case Err(err):
                return Err(err)
            case Ok(handle):
                pass

        steps = StepLog()
        if handle.window_id is not None:
            if opts.prompt:
                return Err(
                    ValidationError(f"'{handle.name}' already has a window; use `workmux send`")
                )
            await self._focus(handle.window_id)
            return Ok(OpenResult(handle=handle, created_window=False, steps=steps))

        path = handle.worktree_path
        if path is None or not path.exists():
            return Err(
                NotFoundError(
                    f"Worktree for '{handle.name}' does not exist on disk",
                    context={"path": str(path)},
                )
            )
        config = handle.repo.config
        if opts.prompt and not has_agent_pane(config.effective_panes(), config.agent):
            return Err(ValidationError("A prompt was given but the pane layout has no agent pane"))

        await self._prepare(
            handle.repo,
            handle.name,
            path,
            handle.branch,
            steps,
            run_files=opts.run_files,
            run_hooks_=opts.run_hooks,
        )
        match await self._open_window(handle.repo, handle.name, path, steps):
            case Err(_):
                return Err(
                    _partial(
                        f"Could not open a window for '{handle.name}'",
                        steps,
                        HandleState.WORKTREE_ONLY.value,
                    )
                )
            case Ok(layout):
                pass

        if opts.prompt:
            await self._inject_prompt(handle.repo, layout, opts.prompt, steps)
        if not opts.background:
            await self._focus(layout.window_id)

        opened = Handle(
            name=handle.name,
            repo=handle.repo,
            state=HandleState.BOUND,
            worktree_path=path,
            branch=handle.branch,
            window=WindowRecord(
                window_id=layout.window_id,
                title=window_name(handle.name, config),
                pane_ids=tuple(layout.pane_ids),
            ),
            status=handle.status,
            is_main=handle.is_main,
        )
        if not steps.ok:
            return Err(
                _partial(f"Opened '{handle.name}' with errors", steps, HandleState.BOUND.value)
            )
        return Ok(OpenResult(handle=opened, created_window=True, steps=steps))

    # -------------------------------------------------------------------------
    # merge
    # -------------------------------------------------------------------------

    async def merge(
        self, name: str | None, options: MergeOptions | None = None, *, repo: str | None = None
    ) -> Result[MergeResult, WorkmuxError]:
        opts = options or MergeOptions()
        match await self.resolve(name, repo):
            case Err(err):
                return Err(err)
            case Ok(handle):
                pass

        if handle.is_main:
            return Err(ValidationError("Cannot merge the main worktree"))
        if not handle.branch or handle.worktree_path is None:
            return Err(
                ValidationError(f"'{handle.name}' has no branch checked out (detached HEAD)")
            )

        config = handle.repo.config
        git = handle.repo.git()
        root = handle.repo.root
        branch = handle.branch
        worktree = handle.worktree_path

        if opts.into:
            target = opts.into
        else:
            match await git.default_branch(config.main_branch):
                case Err(err):
                    return Err(err)
                case Ok(found):
                    target = found
        if target == branch:
            return Err(ValidationError(f"Cannot merge '{branch}' into itself"))

        for location in (root, worktree):
            in_progress = operation_in_progress(location)
            if in_progress is None:
                continue
            conflicts = (await git.get_conflict_files(location)).unwrap_or([])
            return Err(
                MergeConflictError(
                    f"A {in_progress} is still in progress in {location}; "
                    "finish or abort it, then re-run merge",
                    location=str(location),
                    conflicts=[str(path) for path in conflicts],
                    context={"handle": handle.name},
                )
            )

        match await git.current_branch(root):
            case Err(err):
                return Err(err)
            case Ok(checked_out) if checked_out != target:
                return Err(
                    ValidationError(
                        f"The main worktree has '{checked_out}' checked out, not '{target}'",
                        context={"path": str(root)},
                    )
                )
            case Ok(_):
                pass

        match await git.has_uncommitted_changes(root):
            case Err(err):
                return Err(err)
            case Ok(True):
                return Err(
                    DirtyWorktreeError(
                        "The main worktree has uncommitted changes", context={"path": str(root)}
                    )
                )
            case Ok(False):
                pass

        warnings: list[str] = []
        keep_dirty = False
        if not opts.ignore_uncommitted:
            match await git.has_uncommitted_changes(worktree):
                case Err(err):
                    return Err(err)
                case Ok(True) if config.uncommitted_policy == UncommittedPolicy.BLOCK:
                    return Err(
                        DirtyWorktreeError(
                            f"Worktree '{handle.name}' has uncommitted changes; "
                            "commit them or pass --ignore-uncommitted",
                            context={"path": str(worktree)},
                        )
                    )
                case Ok(True):
                    keep_dirty = True
                    warnings.append(
                        f"Worktree '{handle.name}' has uncommitted changes that are not merged; "
                        f"kept {worktree} and branch '{branch}'"
                    )
                case Ok(False):
                    pass

        if opts.run_hooks and config.pre_merge:
            env = hook_env(
                handle=handle.name,
                worktree=worktree,
                project_root=root,
                branch=branch,
                target_branch=target,
            )
            match await run_hooks(
                "pre_merge", config.pre_merge, cwd=worktree, env=env, timeout=config.hook_timeout
            ):
                case Err(err):
                    return Err(err)
                case Ok(_):
                    pass

        strategy = opts.strategy or config.merge_strategy
        steps = StepLog()
        logger.debug("Merging %s into %s with %s", branch, target, strategy)
        match strategy:
            case MergeStrategy.REBASE:
                merged = await git.rebase(worktree, target)
                if merged.is_ok():
                    merged = await git.merge_ff_only(branch)
            case MergeStrategy.SQUASH:
                merged = await git.merge_squash(branch)
            case _:
                merged = await git.merge(branch)

        match merged:
            case Err(err):
                return Err(err)
            case Ok(commit):
                steps.done("merge")

        result = MergeResult(
            name=handle.name,
            branch=branch,
            target=target,
            strategy=strategy,
            commit=commit,
            steps=steps,
            warnings=warnings,
        )
        if opts.keep:
            return Ok(result)

        await self._cleanup(
            handle,
            steps,
            force=opts.ignore_uncommitted,
            keep_branch=False,
            keep_worktree=keep_dirty,
        )
        if not steps.ok:
            return Err(
                _partial(
                    f"Merged '{branch}' into '{target}' but cleanup was incomplete",
                    steps,
                    self._state_after_cleanup(steps),
                    warnings,
                )
            )
        return Ok(result)

    # -------------------------------------------------------------------------
    # remove / close
    # -------------------------------------------------------------------------

    async def unmerged_commits(
        self, handle: Handle, target: str | None = None
    ) -> Result[int, WorkmuxError]:
        """Commits on the handle's branch missing from the merge target."""
        if not handle.branch:
            return Ok(0)
        git = handle.repo.git()
        if target is None:
            match await git.default_branch(handle.repo.config.main_branch):
                case Err(err):
                    return Err(err)
                case Ok(found):
                    target = found
        match await git.commits_ahead(handle.branch, target):
            case Err(err):
                return Err(err)
            case Ok(count):
                return Ok(count)

    async def remove(
        self, name: str | None, options: RemoveOptions | None = None, *, repo: str | None = None
    ) -> Result[RemoveResult, WorkmuxError]:
        opts = options or RemoveOptions()
        match await self.registry():
            case Err(err):
                return Err(err)
            case Ok(registry):
                pass

        match registry.resolve_target(name, self.cwd, repo):
            case Ok(handle):
                pass
            case Err(NotFoundError() as err) if name and registry.orphan(name) is not None:
                return await self._remove_orphan(registry, name)
            case Err(err):
                return Err(err)

        if handle.is_main:
            return Err(ValidationError("Cannot remove the main worktree"))

        path = handle.worktree_path
        if not opts.force and path is not None and path.exists():
            match await handle.repo.git().has_uncommitted_changes(path):
                case Err(err):
                    return Err(err)
                case Ok(True):
                    return Err(
                        DirtyWorktreeError(
                            f"Worktree '{handle.name}' has uncommitted changes. "
                            "Use --force to delete anyway.",
                            context={"path": str(path)},
                        )
                    )
                case Ok(False):
                    pass

        steps = StepLog()
        config = handle.repo.config
        if opts.run_hooks and config.pre_remove and path is not None and path.exists():
            env = hook_env(
                handle=handle.name,
                worktree=path,
                project_root=handle.repo.root,
                branch=handle.branch,
            )
            match await run_hooks(
                "pre_remove", config.pre_remove, cwd=path, env=env, timeout=config.hook_timeout
            ):
                case Err(err):
                    logger.warning("pre_remove hook failed for %s: %s", handle.name, err)
                    steps.failed("pre_remove", err)
                case Ok(_):
                    steps.done("pre_remove")

        await self._cleanup(handle, steps, force=opts.force, keep_branch=opts.keep_branch)
        if not steps.ok:
            return Err(
                _partial(
                    f"Removed '{handle.name}' with errors", steps, self._state_after_cleanup(steps)
                )
            )
        return Ok(
            RemoveResult(name=handle.name, branch=handle.branch, state=handle.state, steps=steps)
        )

    async def _remove_orphan(
        self, registry: HandleRegistry, name: str
    ) -> Result[RemoveResult, WorkmuxError]:
        current = await self.tmux.current_window_id()
        steps = StepLog()
        for orphan in [o for o in registry.orphans if o.name == name]:
            match await self._kill_window(orphan.window.window_id, current):
                case Err(err):
                    steps.failed(f"window {orphan.window.window_id}", err)
                case Ok(_):
                    steps.done(f"window {orphan.window.window_id}")
        if not steps.ok:
            return Err(
                _partial(
                    f"Could not close orphan window(s) for '{name}'",
                    steps,
                    HandleState.WINDOW_ONLY.value,
                )
            )
        return Ok(RemoveResult(name=name, branch=None, state=HandleState.WINDOW_ONLY, steps=steps))

    async def close(
        self, name: str | None, *, repo: str | None = None
    ) -> Result[CloseResult, WorkmuxError]:
        """Kill the handle's window but keep its worktree and branch."""
        match await self.resolve(name, repo):
            case Err(err):
                return Err(err)
            case Ok(handle):
                pass

        if handle.window_id is None:
            return Err(
                NotFoundError(
                    f"No tmux window open for '{handle.name}'", context={"handle": handle.name}
                )
            )

        current = await self.tmux.current_window_id()
        match await self._kill_window(handle.window_id, current):
            case Err(err):
                return Err(err)
            case Ok(scheduled):
                return Ok(
                    CloseResult(name=handle.name, window_id=handle.window_id, scheduled=scheduled)
                )


__all__ = [
    "AddOptions",
    "AddResult",
    "CloseResult",
    "LifecycleEngine",
    "MergeOptions",
    "MergeResult",
    "OpenOptions",
    "OpenResult",
    "RemoveOptions",
    "RemoveResult",
]
