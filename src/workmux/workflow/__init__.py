"""Handle reconciliation and lifecycle.

This package joins git worktrees with tmux windows:
    - probes: Read-only snapshots of worktrees and windows
    - handles: The registry built by joining both probes
    - lifecycle: add/open/merge/remove/close
    - status: Agent status annotations
    - panes: Sending text to and capturing agent panes
"""

from __future__ import annotations
