"""Handle lifecycle commands.

Provides CLI commands for:
    - Creating a worktree + window pair (add)
    - Re-opening the window of an existing worktree (open)
    - Merging a handle into its target branch and cleaning up (merge)
    - Removing a handle, or an orphan window, entirely (remove)
    - Closing a window while keeping the worktree (close)
    - Printing a handle's worktree path (path)
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from workmux.commands._support import build_engine, read_prompt, unwrap
from workmux.core.config import MergeStrategy
from workmux.core.console import console
from workmux.core.decorators import exit_with_error, handle_exceptions
from workmux.core.result import Err, Ok, ValidationError
from workmux.workflow.lifecycle import AddOptions, MergeOptions, OpenOptions, RemoveOptions


def _numbered(value: str | None, index: int, count: int) -> str | None:
    if value is None or count <= 1:
        return value
    return f"{value}-{index}"


@handle_exceptions
def add(
    ctx: typer.Context,
    branch: str = typer.Argument(..., help="Branch to check out (created when missing)."),
    base: str | None = typer.Option(None, "--base", "-b", help="Start point for a new branch."),
    name: str | None = typer.Option(None, "--name", help="Handle name (default: derived)."),
    prompt: str | None = typer.Option(None, "--prompt", "-p", help="Prompt for the agent pane."),
    prompt_file: Path | None = typer.Option(
        None, "--prompt-file", "-P", help="Read the agent prompt from a file."
    ),
    count: int = typer.Option(1, "--count", "-n", min=1, help="Create N numbered handles."),
    background: bool = typer.Option(
        False, "--background", "-d", help="Do not switch to the new window."
    ),
    no_hooks: bool = typer.Option(False, "--no-hooks", help="Skip post_create hooks."),
    no_files: bool = typer.Option(False, "--no-files", help="Skip file copy/symlink."),
    repo: str | None = typer.Option(None, "--repo", help="Repository label or path."),
) -> None:
    """Create a worktree and its tmux window."""
    _ = ctx
    text = read_prompt(prompt, prompt_file)

    async def _run() -> None:
        engine = await build_engine(repo)
        for index in range(1, count + 1):
            options = AddOptions(
                base=base,
                name=_numbered(name, index, count),
                prompt=text,
                # Only the last window of a batch takes focus.
                background=background or index < count,
                run_hooks=not no_hooks,
                run_files=not no_files,
            )
            result = unwrap(await engine.add(_numbered(branch, index, count) or branch, options))
            handle = result.handle
            verb = "Created" if result.created_branch else "Checked out"
            console.print(
                f"[green]✓[/green] {verb} [cyan]{handle.branch}[/cyan] as "
                f"[bold]{handle.name}[/bold] in {handle.worktree_path}"
            )
            if result.hooks_run:
                console.print(f"  [dim]ran {result.hooks_run} post_create hook(s)[/dim]")

    asyncio.run(_run())


@handle_exceptions
def open_cmd(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Handle (default: the current worktree)."),
    prompt: str | None = typer.Option(None, "--prompt", "-p", help="Prompt for the agent pane."),
    prompt_file: Path | None = typer.Option(
        None, "--prompt-file", "-P", help="Read the agent prompt from a file."
    ),
    background: bool = typer.Option(
        False, "--background", "-d", help="Do not switch to the window."
    ),
    run_hooks: bool = typer.Option(False, "--run-hooks", help="Run post_create hooks again."),
    files: bool = typer.Option(False, "--files", help="Copy/symlink configured files again."),
    repo: str | None = typer.Option(None, "--repo", help="Repository label or path."),
) -> None:
    """Open (or focus) the tmux window of an existing worktree."""
    _ = ctx
    options = OpenOptions(
        prompt=read_prompt(prompt, prompt_file),
        background=background,
        run_hooks=run_hooks,
        run_files=files,
    )

    async def _run() -> None:
        engine = await build_engine(repo)
        result = unwrap(await engine.open(name, options, repo=repo))
        if result.created_window:
            console.print(f"[green]✓[/green] Opened window for [bold]{result.handle.name}[/bold]")
        else:
            console.print(f"Switched to [bold]{result.handle.name}[/bold]")

    asyncio.run(_run())


@handle_exceptions
def merge(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Handle (default: the current worktree)."),
    into: str | None = typer.Option(None, "--into", help="Target branch (default: main branch)."),
    rebase: bool = typer.Option(False, "--rebase", help="Rebase onto the target, then fast-forward."),
    squash: bool = typer.Option(False, "--squash", help="Squash all commits into one."),
    ignore_uncommitted: bool = typer.Option(
        False, "--ignore-uncommitted", help="Merge even if the worktree is dirty."
    ),
    keep: bool = typer.Option(False, "--keep", "-k", help="Keep worktree, window and branch."),
    no_hooks: bool = typer.Option(False, "--no-hooks", help="Skip pre_merge hooks."),
    repo: str | None = typer.Option(None, "--repo", help="Repository label or path."),
) -> None:
    """Merge a handle's branch into the target branch and clean it up."""
    _ = ctx
    if rebase and squash:
        exit_with_error(ValidationError("--rebase and --squash are mutually exclusive"))
    strategy = MergeStrategy.REBASE if rebase else MergeStrategy.SQUASH if squash else None
    options = MergeOptions(
        strategy=strategy,
        into=into,
        ignore_uncommitted=ignore_uncommitted,
        keep=keep,
        run_hooks=not no_hooks,
    )

    async def _run() -> None:
        engine = await build_engine(repo)
        result = unwrap(await engine.merge(name, options, repo=repo))
        for warning in result.warnings:
            console.print(f"[yellow]{warning}[/yellow]")
        commit = f" ({result.commit})" if result.commit else ""
        console.print(
            f"[green]✓[/green] Merged [cyan]{result.branch}[/cyan] into "
            f"[cyan]{result.target}[/cyan] via {result.strategy.value}{commit}"
        )
        if not keep:
            console.print(f"  [dim]removed {', '.join(result.steps.completed[1:]) or 'nothing'}[/dim]")

    asyncio.run(_run())


@handle_exceptions
def remove(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Handle (default: the current worktree)."),
    force: bool = typer.Option(
        False, "--force", "-f", help="Skip confirmations and delete uncommitted changes."
    ),
    keep_branch: bool = typer.Option(False, "--keep-branch", "-k", help="Keep the local branch."),
    no_hooks: bool = typer.Option(False, "--no-hooks", help="Skip pre_remove hooks."),
    repo: str | None = typer.Option(None, "--repo", help="Repository label or path."),
) -> None:
    """Remove a handle's window, worktree and branch."""
    _ = ctx
    engine = asyncio.run(build_engine(repo))

    if not force and not keep_branch:

        async def _unmerged() -> tuple[str, int] | None:
            match await engine.resolve(name, repo):
                case Ok(handle) if handle.branch and not handle.is_main:
                    count = unwrap(await engine.unmerged_commits(handle))
                    return (handle.branch, count) if count else None
                case _:
                    # Resolution errors are reported by the removal itself.
                    return None

        unmerged = asyncio.run(_unmerged())
        if unmerged is not None:
            branch, count = unmerged
            if not typer.confirm(
                f"Branch '{branch}' has {count} unmerged commit(s). Delete it anyway?",
                default=False,
            ):
                console.print("[yellow]Aborted.[/yellow]")
                raise typer.Exit(code=1)

    options = RemoveOptions(force=force, keep_branch=keep_branch, run_hooks=not no_hooks)
    result = unwrap(asyncio.run(engine.remove(name, options, repo=repo)))
    console.print(f"[green]✓[/green] Removed [bold]{result.name}[/bold]")
    if result.branch and keep_branch:
        console.print(f"  [dim]kept branch {result.branch}[/dim]")


@handle_exceptions
def close(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Handle (default: the current worktree)."),
    repo: str | None = typer.Option(None, "--repo", help="Repository label or path."),
) -> None:
    """Close a handle's tmux window; the worktree and branch stay."""
    _ = ctx

    async def _run() -> None:
        engine = await build_engine(repo)
        result = unwrap(await engine.close(name, repo=repo))
        suffix = " (scheduled)" if result.scheduled else ""
        console.print(f"[green]✓[/green] Closed window {result.window_id} of [bold]{result.name}[/bold]{suffix}")

    asyncio.run(_run())


@handle_exceptions
def path(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Handle name."),
    repo: str | None = typer.Option(None, "--repo", help="Repository label or path."),
) -> None:
    """Print the worktree path of a handle."""
    _ = ctx

    async def _run() -> Path:
        engine = await build_engine(repo)
        match await engine.resolve(name, repo):
            case Err(err):
                exit_with_error(err)
            case Ok(handle) if handle.worktree_path is None:
                exit_with_error(ValidationError(f"'{name}' has no worktree"))
            case Ok(handle):
                return handle.worktree_path

    typer.echo(str(asyncio.run(_run())))
