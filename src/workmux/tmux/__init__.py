"""tmux command surface: windows, panes, options, hooks and buffers."""

from __future__ import annotations

from .client import (
    FOCUS_HOOK,
    PANE_ROLE_OPTION,
    STATUS_OPTION,
    TmuxClient,
    TmuxPane,
    TmuxWindow,
    focus_clear_hook,
    status_format,
)

__all__ = [
    "FOCUS_HOOK",
    "PANE_ROLE_OPTION",
    "STATUS_OPTION",
    "TmuxClient",
    "TmuxPane",
    "TmuxWindow",
    "focus_clear_hook",
    "status_format",
]
