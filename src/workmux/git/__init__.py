"""Git operations and repository management.

This package provides async git operations:
    - AsyncRepo: Non-blocking git commands
    - Worktree listing, creation and removal
    - Merge, rebase and squash with conflict detection
    - Repository discovery from the filesystem
"""

from __future__ import annotations

from .client import (
    AsyncRepo,
    BranchStatus,
    WorktreeInfo,
    find_repo_root,
    is_repo,
    iter_git_repos,
    operation_in_progress,
    resolve_git_dir,
)

__all__ = [
    "AsyncRepo",
    "BranchStatus",
    "WorktreeInfo",
    "find_repo_root",
    "is_repo",
    "iter_git_repos",
    "operation_in_progress",
    "resolve_git_dir",
]
