"""System diagnostics and health checks.

Provides diagnostic checks used by `workmux doctor`:
    - External tool availability (git, tmux, gh, the agent binary)
    - Configuration validation
    - Repository and tmux server reachability
"""

from __future__ import annotations

import asyncio
import shlex
import shutil
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from workmux.core.config import ConfigLoadResult, WorkmuxConfig
from workmux.core.process import run_command
from workmux.core.result import Err, Ok


class ExternalTool(BaseModel):
    name: str
    binary: str
    version_args: list[str] = Field(default_factory=lambda: ["--version"])
    required: bool = True
    install_hint: str | None = None


@dataclass
class ToolCheck:
    tool: ExternalTool
    status: str
    version: str | None
    message: str | None = None


class DiagnosticCheck(ABC):
    name: str

    @abstractmethod
    async def run(self) -> tuple[str, str]:
        """Run the diagnostic and return (status, message)."""


class ConfigCheck(DiagnosticCheck):
    def __init__(self, config: WorkmuxConfig, meta: ConfigLoadResult | None) -> None:
        self.config = config
        self.meta = meta
        self.name = "Config"

    async def run(self) -> tuple[str, str]:
        if self.meta is None:
            return ("warn", "Configuration metadata unavailable")
        if self.meta.error:
            return ("error", self.meta.error)

        issues: list[str] = []
        for path in (self.meta.global_path, self.meta.project_path):
            if path is None or not path.exists():
                continue
            try:
                yaml.safe_load(path.read_text(encoding="utf-8"))
            except (OSError, yaml.YAMLError) as exc:
                issues.append(f"{path}: {exc}")

        if issues:
            return ("error", "; ".join(issues))
        sources = ", ".join(str(p) for p in self.meta.sources) or "defaults"
        return ("ok", f"Loaded from {sources}")


class RepositoryCheck(DiagnosticCheck):
    def __init__(self, cwd: Path, timeout: float) -> None:
        self.cwd = cwd
        self.timeout = timeout
        self.name = "Repository"

    async def run(self) -> tuple[str, str]:
        match await run_command(
            ["git", "rev-parse", "--show-toplevel"], cwd=self.cwd, timeout=self.timeout
        ):
            case Err(err):
                return ("error", str(err))
            case Ok(result) if result.ok:
                return ("ok", result.stdout.strip())
            case Ok(_):
                return ("warn", f"{self.cwd} is not inside a git repository")


class TmuxServerCheck(DiagnosticCheck):
    def __init__(self, config: WorkmuxConfig) -> None:
        self.config = config
        self.name = "tmux server"

    async def run(self) -> tuple[str, str]:
        cmd = ["tmux"]
        if self.config.tmux_socket:
            cmd.extend(["-S", self.config.tmux_socket])
        cmd.extend(["list-sessions", "-F", "#{session_name}"])
        match await run_command(cmd, timeout=self.config.command_timeout):
            case Err(err):
                return ("error", str(err))
            case Ok(result) if result.ok:
                sessions = result.stdout.split()
                return ("ok", f"{len(sessions)} session(s): {', '.join(sessions)}")
            case Ok(_):
                return ("warn", "No tmux server running")


def default_tools(config: WorkmuxConfig) -> list[ExternalTool]:
    agent_words = shlex.split(config.agent) if config.agent else []
    tools = [
        ExternalTool(name="git", binary="git", install_hint="Install git 2.20+"),
        ExternalTool(name="tmux", binary="tmux", version_args=["-V"], install_hint="Install tmux 3.0+"),
        ExternalTool(
            name="gh",
            binary="gh",
            required=False,
            install_hint="Optional: enables PR status in `workmux list --pr`",
        ),
    ]
    if agent_words:
        tools.append(
            ExternalTool(
                name="agent",
                binary=agent_words[0],
                required=False,
                install_hint=f"Optional: '{agent_words[0]}' is substituted for <agent>",
            )
        )
    return tools


def _select_tools(tools: list[ExternalTool], names: Iterable[str] | None) -> list[ExternalTool]:
    if not names:
        return tools

    requested = {name.lower() for name in names}
    selected = [
        tool
        for tool in tools
        if tool.name.lower() in requested or tool.binary.lower() in requested
    ]
    return selected or tools


async def _check_tool(tool: ExternalTool, timeout: float) -> ToolCheck:
    resolved = shutil.which(tool.binary)
    if not resolved:
        status = "missing" if tool.required else "warn"
        return ToolCheck(tool=tool, status=status, version=None, message=tool.install_hint)

    match await run_command([resolved, *tool.version_args], timeout=timeout):
        case Err(err):
            return ToolCheck(tool=tool, status="error", version=None, message=str(err))
        case Ok(result):
            output = result.stdout.strip() or result.stderr.strip()
            version = output.splitlines()[0] if output else None
            if not result.ok:
                return ToolCheck(
                    tool=tool,
                    status="error",
                    version=version,
                    message=output or "version command failed",
                )
            return ToolCheck(tool=tool, status="ok", version=version, message=None)


async def _run_doctor(tools: list[ExternalTool], timeout: float) -> list[ToolCheck]:
    tasks = [asyncio.create_task(_check_tool(tool, timeout)) for tool in tools]
    return await asyncio.gather(*tasks)


async def _run_deep_checks(
    config: WorkmuxConfig, meta: ConfigLoadResult | None, cwd: Path
) -> list[tuple[str, str, str]]:
    diag_checks: list[DiagnosticCheck] = [
        ConfigCheck(config, meta),
        RepositoryCheck(cwd, config.command_timeout),
        TmuxServerCheck(config),
    ]
    results = await asyncio.gather(*(check.run() for check in diag_checks))
    return [
        (check.name, status, message)
        for check, (status, message) in zip(diag_checks, results, strict=True)
    ]


async def run_diagnostics_suite(
    config: WorkmuxConfig,
    meta: ConfigLoadResult | None,
    cwd: Path,
    tool_names: list[str] | None,
) -> tuple[list[tuple[str, str, str]], list[ToolCheck]]:
    """Run deep checks and tool checks in parallel."""
    tools = _select_tools(default_tools(config), tool_names)
    deep_checks_task = asyncio.create_task(_run_deep_checks(config, meta, cwd))
    tools_task = asyncio.create_task(_run_doctor(tools, config.command_timeout))
    return await asyncio.gather(deep_checks_task, tools_task)


__all__ = [
    "ConfigCheck",
    "DiagnosticCheck",
    "ExternalTool",
    "RepositoryCheck",
    "TmuxServerCheck",
    "ToolCheck",
    "default_tools",
    "run_diagnostics_suite",
]
