"""CLI command modules for workmux.

This package contains all user-facing CLI commands organized by domain:
    - worktree: add, open, merge, remove, close, path
    - listing: list and the live dashboard
    - panes: send and capture
    - status: the agent status hook
    - complete: hidden shell completion queries
    - claude: Claude CLI state maintenance
    - init: project config scaffolding
"""

from __future__ import annotations
