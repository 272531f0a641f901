"""Prune stale project entries from the Claude CLI state file (~/.claude.json)."""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from workmux.core.result import ConfigurationError, Err, Ok, Result

logger = logging.getLogger(__name__)


def claude_config_path() -> Path:
    return Path.home() / ".claude.json"


@dataclass
class PruneReport:
    path: Path
    total: int = 0
    removed: list[str] = field(default_factory=list)
    backup: Path | None = None
    found: bool = True
    has_projects: bool = True


def prune_claude_projects(path: Path | None = None) -> Result[PruneReport, ConfigurationError]:
    """Drop `projects` entries whose absolute path no longer exists.

    Relative keys are never touched. When something is removed the
    unmodified file is first copied to `<name>.json.bak`.
    """
    config_path = path or claude_config_path()
    if not config_path.exists():
        return Ok(PruneReport(path=config_path, found=False))

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        return Err(ConfigurationError(f"Failed to read {config_path}: {exc}"))

    projects = data.get("projects") if isinstance(data, dict) else None
    if not isinstance(projects, dict):
        return Ok(PruneReport(path=config_path, has_projects=False))

    report = PruneReport(path=config_path, total=len(projects))
    for key in list(projects):
        candidate = Path(key)
        if candidate.is_absolute() and not candidate.exists():
            report.removed.append(key)

    if not report.removed:
        return Ok(report)

    backup = config_path.with_suffix(".json.bak")
    try:
        shutil.copy2(config_path, backup)
        for key in report.removed:
            del projects[key]
        config_path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    except OSError as exc:
        return Err(ConfigurationError(f"Failed to update {config_path}: {exc}"))

    logger.debug("Pruned %d entries from %s", len(report.removed), config_path)
    report.backup = backup
    return Ok(report)


__all__ = ["PruneReport", "claude_config_path", "prune_claude_projects"]
