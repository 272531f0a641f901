"""workmux - parallel git worktrees bound to tmux windows.

This package provides the core functionality for the `workmux` command-line tool:
reconciling git worktrees, tmux windows and agent status under a single handle.

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.4.0"
