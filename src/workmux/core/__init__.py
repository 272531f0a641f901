"""Core shared infrastructure for workmux.

This package contains foundational utilities:
    - config: Configuration documents, env overrides and Safe Mode loading
    - console: Rich console output and logging
    - process: Bounded async subprocess execution
    - runtime: Runtime context management
    - result: Error handling patterns
"""

from __future__ import annotations

from . import config, console

__all__ = ["config", "console"]
