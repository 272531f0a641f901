"""Shared plumbing for CLI commands: runtime lookup, engine construction, Result unwrapping."""

from __future__ import annotations

from pathlib import Path
from typing import TypeVar

from workmux.core.decorators import exit_with_error
from workmux.core.result import Err, Ok, Result, ValidationError
from workmux.core.runtime import RuntimeContext, get_runtime
from workmux.tmux import TmuxClient
from workmux.workflow.handles import RepoContext
from workmux.workflow.lifecycle import LifecycleEngine
from workmux.workflow.repos import discover_repos, tmux_for

T = TypeVar("T")


def unwrap(result: Result[T, Exception]) -> T:
    match result:
        case Ok(value):
            return value
        case Err(err):
            exit_with_error(err)


async def load_repos(runtime: RuntimeContext, repo: str | None = None) -> list[RepoContext]:
    return unwrap(await discover_repos(runtime, repo))


async def build_engine(repo: str | None = None) -> LifecycleEngine:
    runtime = get_runtime()
    repos = await load_repos(runtime, repo)
    return LifecycleEngine(repos, tmux_for(runtime), cwd=runtime.cwd)


def runtime_tmux() -> TmuxClient:
    return tmux_for(get_runtime())


def read_prompt(prompt: str | None, prompt_file: Path | None) -> str | None:
    if prompt is not None and prompt_file is not None:
        exit_with_error(ValidationError("Pass either --prompt or --prompt-file, not both"))
    if prompt_file is None:
        return prompt
    try:
        return prompt_file.expanduser().read_text(encoding="utf-8")
    except OSError as exc:
        exit_with_error(
            ValidationError(f"Could not read prompt file: {exc}", context={"path": str(prompt_file)})
        )


__all__ = ["build_engine", "load_repos", "read_prompt", "runtime_tmux", "unwrap"]
