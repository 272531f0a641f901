"""Application configuration management.

Handles loading and validating configuration from multiple sources:
    - Global YAML document (~/.config/workmux/config.yaml)
    - Project YAML document (.workmux.yaml at the repository root)
    - Environment variables (WORKMUX_* prefix)
    - Default values

Key components:
    - WorkmuxConfig: Main configuration model
    - load_config(): Safe config loading with fallback
    - ConfigLoadResult: Metadata about config sources
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any
from unittest.mock import patch

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

CONFIG_ENV_VAR = "WORKMUX_CONFIG"
CONFIG_VERSION = 1
GLOBAL_PLACEHOLDER = "<global>"
AGENT_PLACEHOLDER = "<agent>"
PROJECT_CONFIG_NAMES = (".workmux.yaml", ".workmux.yml")


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or validated."""


# -----------------------------------------------------------------------------
# Sub-configuration Models
# -----------------------------------------------------------------------------


class SplitDirection(StrEnum):
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


class MergeStrategy(StrEnum):
    MERGE = "merge"
    REBASE = "rebase"
    SQUASH = "squash"


class WorktreeNaming(StrEnum):
    FULL = "full"
    BASENAME = "basename"


class UncommittedPolicy(StrEnum):
    BLOCK = "block"
    WARN = "warn"


class PaneConfig(BaseModel):
    """One pane of the window layout."""

    command: str | None = Field(
        default=None, description="Command typed into the pane; the shell stays open afterwards."
    )
    focus: bool = Field(default=False, description="Give this pane focus after creation.")
    split: SplitDirection | None = Field(
        default=None, description="Split direction from the target pane."
    )
    size: int | None = Field(default=None, ge=1, description="Size in lines or cells.")
    percentage: int | None = Field(default=None, description="Size as a percentage (1-100).")
    target: int | None = Field(
        default=None, ge=0, description="0-based index of the pane to split (default: last)."
    )

    @property
    def is_agent(self) -> bool:
        return bool(self.command) and AGENT_PLACEHOLDER in (self.command or "")


class StatusIcons(BaseModel):
    """Glyphs written into the window annotation for each agent status."""

    working: str = "🤖"
    waiting: str = "💬"
    done: str = "✅"


class FileConfig(BaseModel):
    """Files copied or symlinked from the repo root into each new worktree."""

    copy_: list[str] | None = Field(default=None, alias="copy")
    symlink: list[str] | None = None

    model_config = {"populate_by_name": True}


def validate_panes(panes: list[PaneConfig]) -> None:
    """Reject pane layouts tmux cannot build. Raises ValueError."""
    for index, pane in enumerate(panes):
        if index == 0:
            if pane.split is not None:
                raise ValueError("First pane (index 0) cannot have a 'split' direction.")
            if pane.size is not None or pane.percentage is not None:
                raise ValueError("First pane (index 0) cannot have 'size' or 'percentage'.")
        elif pane.split is None:
            raise ValueError(f"Pane {index} must have a 'split' direction specified.")

        if pane.size is not None and pane.percentage is not None:
            raise ValueError(f"Pane {index} cannot have both 'size' and 'percentage' specified.")
        if pane.percentage is not None and not 1 <= pane.percentage <= 100:
            raise ValueError(
                f"Pane {index} has invalid percentage {pane.percentage}. Must be between 1 and 100."
            )
        if pane.target is not None and pane.target >= index:
            raise ValueError(
                f"Pane {index} has invalid target {pane.target}. Target must reference a "
                f"previously created pane (0-{max(index - 1, 0)})."
            )


def default_panes() -> list[PaneConfig]:
    return [
        PaneConfig(command=None, focus=True),
        PaneConfig(command="clear", split=SplitDirection.HORIZONTAL),
    ]


def agent_default_panes() -> list[PaneConfig]:
    return [
        PaneConfig(command=AGENT_PLACEHOLDER, focus=True),
        PaneConfig(command="clear", split=SplitDirection.HORIZONTAL),
    ]


class WorkmuxConfig(BaseSettings):
    """Effective configuration: global document, project document and env merged."""

    model_config = SettingsConfigDict(
        env_prefix="WORKMUX_",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    config_version: int = Field(default=CONFIG_VERSION, description="Document schema version.")
    main_branch: str | None = Field(default=None, description="Branch merges land on.")
    worktree_dir: str | None = Field(
        default=None, description="Worktree parent directory (default: <repo>__worktrees)."
    )
    window_prefix: str = Field(default="wm-", description="Prefix for tmux window names.")
    worktree_prefix: str = Field(default="", description="Prefix for derived handle names.")
    worktree_naming: WorktreeNaming = Field(default=WorktreeNaming.FULL)
    repo_paths: list[str] | None = Field(
        default=None, description="Repository paths or globs for multi-repo commands."
    )
    session: str | None = Field(default=None, description="tmux session to manage (default: all).")
    tmux_socket: str | None = Field(default=None, description="tmux socket path (-S).")
    panes: list[PaneConfig] | None = None
    post_create: list[str] | None = None
    pre_merge: list[str] | None = None
    pre_remove: list[str] | None = None
    agent: str = Field(default="claude", description="Command substituted for '<agent>'.")
    merge_strategy: MergeStrategy = Field(default=MergeStrategy.MERGE)
    files: FileConfig = Field(default_factory=FileConfig)
    status_format: bool = Field(
        default=True, description="Amend the tmux window format to show the status icon."
    )
    status_icons: StatusIcons = Field(default_factory=StatusIcons)
    uncommitted_policy: UncommittedPolicy = Field(default=UncommittedPolicy.BLOCK)
    command_timeout: float = Field(
        default=30.0, gt=0, description="Timeout in seconds for each external command."
    )
    hook_timeout: float = Field(
        default=600.0, gt=0, description="Timeout in seconds for each configured hook command."
    )
    agent_startup_delay: float = Field(
        default=1.5, ge=0, description="Seconds to wait for the agent before injecting a prompt."
    )
    dashboard_refresh: float = Field(default=2.0, gt=0, description="Dashboard poll interval.")
    log_level: str = Field(default="WARNING", description="Log level for workmux output.")

    @field_validator("panes", mode="after")
    @classmethod
    def check_panes(cls, v: list[PaneConfig] | None) -> list[PaneConfig] | None:
        if v is not None:
            validate_panes(v)
        return v

    @field_validator("config_version", mode="after")
    @classmethod
    def check_version(cls, v: int) -> int:
        if v > CONFIG_VERSION:
            raise ValueError(
                f"config_version {v} is newer than this workmux understands ({CONFIG_VERSION})."
            )
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
    ]:
        # Ensure environment variables override config file entries.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)

    def effective_panes(self) -> list[PaneConfig]:
        return list(self.panes) if self.panes is not None else default_panes()


@dataclass
class ConfigLoadResult:
    global_path: Path
    project_path: Path | None
    global_loaded: bool
    project_loaded: bool
    env_overrides: set[str] = field(default_factory=set)
    error: str | None = None

    @property
    def sources(self) -> list[Path]:
        found: list[Path] = []
        if self.global_loaded:
            found.append(self.global_path)
        if self.project_loaded and self.project_path is not None:
            found.append(self.project_path)
        return found


def _resolve_global_path(config_path: Path | None, env_vars: Mapping[str, str]) -> Path:
    if config_path is not None:
        return Path(config_path).expanduser()
    if env_vars.get(CONFIG_ENV_VAR):
        return Path(env_vars[CONFIG_ENV_VAR]).expanduser()
    base = Path.home() / ".config" / "workmux"
    yml = base / "config.yml"
    if not (base / "config.yaml").exists() and yml.exists():
        return yml
    return base / "config.yaml"


def find_project_config(repo_root: Path | None) -> Path | None:
    if repo_root is None:
        return None
    for name in PROJECT_CONFIG_NAMES:
        candidate = repo_root / name
        if candidate.exists():
            return candidate
    return None


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    raw = path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Syntax error in {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {path} must be a mapping.")

    return data


def _merge_list(global_items: Any, project_items: Any) -> Any:
    """Project list wins; a '<global>' entry splices the global list in place."""
    if project_items is None:
        return global_items
    if not isinstance(project_items, list) or not isinstance(global_items, list):
        return project_items
    if GLOBAL_PLACEHOLDER not in project_items:
        return project_items
    merged: list[Any] = []
    for item in project_items:
        if item == GLOBAL_PLACEHOLDER:
            merged.extend(global_items)
        else:
            merged.append(item)
    return merged


_LIST_FIELDS = ("post_create", "pre_merge", "pre_remove")
_NESTED_FIELDS = ("status_icons",)


def merge_documents(global_data: Mapping[str, Any], project_data: Mapping[str, Any]) -> dict[str, Any]:
    """Overlay the project document on the global one."""
    merged: dict[str, Any] = {**global_data}
    for key, value in project_data.items():
        if key in _LIST_FIELDS:
            merged[key] = _merge_list(global_data.get(key), value)
        elif key == "files" and isinstance(value, dict):
            global_files = global_data.get("files") or {}
            merged["files"] = {
                name: _merge_list(global_files.get(name), value.get(name))
                for name in ("copy", "symlink")
                if value.get(name) is not None or global_files.get(name) is not None
            }
        elif key in _NESTED_FIELDS and isinstance(value, dict):
            merged[key] = {**(global_data.get(key) or {}), **value}
        else:
            merged[key] = value
    # repo_paths only makes sense globally.
    if "repo_paths" in project_data:
        merged["repo_paths"] = global_data.get("repo_paths")
    return merged


def _detect_env_overrides(env_vars: Mapping[str, str]) -> set[str]:
    """Detect which fields are overridden by environment variables."""
    prefix = WorkmuxConfig.model_config.get("env_prefix", "")
    return {
        name for name in WorkmuxConfig.model_fields if f"{prefix}{name}".upper() in env_vars
    }


def load_config(
    config_path: Path | None = None,
    repo_root: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[WorkmuxConfig, ConfigLoadResult]:
    """
    Load configuration with Safe Mode fallback.
    If a document is invalid, returns default config + error message.
    """
    env_vars: Mapping[str, str] = os.environ if env is None else {**os.environ, **env}
    global_path = _resolve_global_path(config_path, env_vars)
    project_path = find_project_config(repo_root)

    errors: list[str] = []
    global_data: dict[str, Any] = {}
    project_data: dict[str, Any] = {}

    try:
        global_data = _read_config_file(global_path)
    except ConfigError as exc:
        errors.append(str(exc))
    if project_path is not None:
        try:
            project_data = _read_config_file(project_path)
        except ConfigError as exc:
            errors.append(str(exc))

    data = merge_documents(global_data, project_data)

    context_manager = (
        patch.dict(os.environ, env_vars, clear=False) if env is not None else nullcontext()
    )

    try:
        with context_manager:
            config = WorkmuxConfig(**data)
    except ValidationError as exc:
        errors.append(str(exc))
        with context_manager:
            config = WorkmuxConfig()

    if config.panes is None and repo_root is not None and (repo_root / "CLAUDE.md").exists():
        config = config.model_copy(update={"panes": agent_default_panes()})

    load_result = ConfigLoadResult(
        global_path=global_path,
        project_path=project_path,
        global_loaded=global_path.exists() and bool(global_data),
        project_loaded=project_path is not None and bool(project_data),
        env_overrides=_detect_env_overrides(env_vars),
        error="; ".join(errors) if errors else None,
    )

    return config, load_result


EXAMPLE_CONFIG = """\
# workmux project configuration
# For global settings, edit ~/.config/workmux/config.yaml
# All options below are commented out - uncomment to override defaults.

config_version: 1

# Branch that `workmux merge` lands on. Default: auto-detected.
# main_branch: main

# Default merge strategy: merge, rebase or squash.
# merge_strategy: rebase

# Where worktrees are created, relative to the repo root or absolute.
# Default: sibling directory '<project>__worktrees'.
# worktree_dir: .worktrees

# How handles are derived from branch names: full or basename.
# worktree_naming: basename

# Prefix for tmux window names.
# window_prefix: "wm-"

# Pane layout. '<agent>' expands to the agent command.
# panes:
#   - command: <agent>
#     focus: true
#   - split: horizontal
#     command: clear

# Agent command used for '<agent>'.
# agent: claude

# Status icons shown in the window title.
# status_icons:
#   working: "🤖"
#   waiting: "💬"
#   done: "✅"

# Refuse to merge a dirty worktree (block) or only warn (warn).
# uncommitted_policy: block

# Hooks. Use "<global>" to splice in the global list.
# post_create:
#   - "<global>"
#   - npm install
# pre_merge:
#   - pytest -q
# pre_remove:
#   - mkdir -p "$WM_PROJECT_ROOT/artifacts/$WM_HANDLE"

# Files copied or symlinked into each new worktree.
# files:
#   copy:
#     - .env.local
#   symlink:
#     - node_modules
"""


__all__ = [
    "AGENT_PLACEHOLDER",
    "CONFIG_ENV_VAR",
    "EXAMPLE_CONFIG",
    "ConfigError",
    "ConfigLoadResult",
    "FileConfig",
    "MergeStrategy",
    "PaneConfig",
    "SplitDirection",
    "StatusIcons",
    "UncommittedPolicy",
    "WorkmuxConfig",
    "WorktreeNaming",
    "agent_default_panes",
    "default_panes",
    "find_project_config",
    "load_config",
    "merge_documents",
    "validate_panes",
]
