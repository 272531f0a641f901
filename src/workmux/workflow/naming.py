"""Naming conventions shared by every component.

A handle is the worktree's directory name; its window is titled
`<window_prefix><handle>`. Both directions of the mapping live here.
"""

from __future__ import annotations

import re
from pathlib import Path

from workmux.core.config import WorkmuxConfig, WorktreeNaming

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def slugify(value: str) -> str:
    """Make a branch-derived name safe for a directory and a window title."""
    slug = _UNSAFE.sub("-", value.strip())
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-.")


def derive_handle(branch: str, config: WorkmuxConfig, override: str | None = None) -> str:
    if override:
        return slugify(override)
    base = branch
    if config.worktree_naming == WorktreeNaming.BASENAME:
        base = branch.rstrip("/").rsplit("/", 1)[-1]
    return f"{config.worktree_prefix}{slugify(base)}"


def window_name(handle: str, config: WorkmuxConfig) -> str:
    return f"{config.window_prefix}{handle}"


def base_name_from_window(title: str, config: WorkmuxConfig) -> str | None:
    """Handle name a window title refers to, or None if it lacks the prefix."""
    prefix = config.window_prefix
    if not prefix or not title.startswith(prefix) or len(title) == len(prefix):
        return None
    return title[len(prefix):]


def worktree_base_dir(repo_root: Path, config: WorkmuxConfig) -> Path:
    """Directory holding the repository's worktrees."""
    if config.worktree_dir:
        configured = Path(config.worktree_dir).expanduser()
        return configured if configured.is_absolute() else repo_root / configured
    return repo_root.parent / f"{repo_root.name}__worktrees"


def worktree_path(repo_root: Path, handle: str, config: WorkmuxConfig) -> Path:
    return worktree_base_dir(repo_root, config) / handle


__all__ = [
    "base_name_from_window",
    "derive_handle",
    "slugify",
    "window_name",
    "worktree_base_dir",
    "worktree_path",
]
