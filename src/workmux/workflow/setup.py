"""Worktree environment setup: configured file copies/symlinks and shell hooks."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from collections.abc import Mapping
from pathlib import Path

from workmux.core.config import FileConfig
from workmux.core.process import run_command
from workmux.core.result import Err, HookError, Ok, Result, WorkmuxError

logger = logging.getLogger(__name__)


def hook_env(
    *,
    handle: str,
    worktree: Path,
    project_root: Path,
    branch: str | None,
    target_branch: str | None = None,
) -> dict[str, str]:
    env = {
        "WM_HANDLE": handle,
        "WM_WORKTREE_PATH": str(worktree),
        "WM_PROJECT_ROOT": str(project_root),
    }
    if branch:
        env["WM_BRANCH_NAME"] = branch
    if target_branch:
        env["WM_TARGET_BRANCH"] = target_branch
    return env


async def run_hooks(
    stage: str,
    commands: list[str] | None,
    *,
    cwd: Path,
    env: Mapping[str, str],
    timeout: float,
) -> Result[int, WorkmuxError]:
    """Run hook commands in order through `sh -c`, stopping at the first failure."""
    merged_env = {**os.environ, **env}
    ran = 0
    for command in commands or []:
        logger.debug("Running %s hook: %s", stage, command)
        match await run_command(["sh", "-c", command], cwd=cwd, env=merged_env, timeout=timeout):
            case Err(err):
                return Err(HookError(f"{stage} hook could not run: {err}", context={"command": command}))
            case Ok(result) if not result.ok:
                return Err(
                    HookError(
                        f"{stage} hook failed (exit {result.returncode}): {command}",
                        context={"stderr": result.stderr.strip()[-500:]} if result.stderr.strip() else None,
                    )
                )
            case Ok(result):
                if result.stdout.strip():
                    logger.debug("%s hook output:\n%s", stage, result.stdout.rstrip())
                ran += 1
    return Ok(ran)


def _expand(root: Path, patterns: list[str]) -> list[Path]:
    matches: list[Path] = []
    for pattern in patterns:
        found = sorted(root.glob(pattern))
        if not found:
            logger.debug("File pattern %r matched nothing in %s", pattern, root)
        matches.extend(found)
    return matches


def _apply_file_ops(source_root: Path, worktree: Path, files: FileConfig) -> list[Path]:
    created: list[Path] = []
    for source in _expand(source_root, files.copy_ or []):
        dest = worktree / source.relative_to(source_root)
        if dest.exists() or dest.is_symlink():
            continue
        dest.parent.mkdir(parents=True, exist_ok=True)
        if source.is_dir():
            shutil.copytree(source, dest, symlinks=True)
        else:
            shutil.copy2(source, dest)
        created.append(dest)

    for source in _expand(source_root, files.symlink or []):
        dest = worktree / source.relative_to(source_root)
        if dest.exists() or dest.is_symlink():
            continue
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.symlink_to(source.resolve(), target_is_directory=source.is_dir())
        created.append(dest)
    return created


async def apply_file_ops(
    source_root: Path, worktree: Path, files: FileConfig
) -> Result[list[Path], WorkmuxError]:
    """Copy or symlink configured files from the main checkout into a new worktree."""
    if not files.copy_ and not files.symlink:
        return Ok([])
    try:
        created = await asyncio.to_thread(_apply_file_ops, source_root, worktree, files)
    except (OSError, ValueError) as exc:
        return Err(WorkmuxError(f"Failed to prepare worktree files: {exc}", context={"worktree": str(worktree)}))
    return Ok(created)


__all__ = ["apply_file_ops", "hook_env", "run_hooks"]
