from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

import typer

logger = logging.getLogger(__name__)


class CommandModule(Protocol):
    app: typer.Typer


@dataclass
class CommandSpec:
    name: str
    handler: Callable[..., None]
    hidden: bool = False


_FUNCTION_COMMANDS: dict[str, dict[str, str]] = {
    "worktree": {
        "add": "add",
        "open": "open_cmd",
        "merge": "merge",
        "remove": "remove",
        "rm": "remove",
        "close": "close",
        "path": "path",
    },
    "listing": {"list": "list_cmd", "ls": "list_cmd", "dashboard": "dashboard"},
    "panes": {"send": "send", "capture": "capture"},
    "status": {"set-window-status": "set_window_status"},
    "complete": {
        "__complete-handles": "complete_handles",
        "__complete-git-branches": "complete_git_branches",
    },
    "init": {"init": "init"},
}

_HIDDEN_COMMANDS = frozenset({"rm", "ls", "__complete-handles", "__complete-git-branches"})


def _module_name(path: Path) -> str:
    return path.stem


def _import_module(module_name: str) -> object | None:
    try:
        return importlib.import_module(module_name)
    except ImportError as exc:  # pragma: no cover
        logger.error("Failed to import command module %s: %s", module_name, exc)
        return None


def _build_function_commands(module_name: str, module: object) -> list[CommandSpec]:
    specs: list[CommandSpec] = []
    mapping = _FUNCTION_COMMANDS.get(module_name, {})
    for cmd_name, attr in mapping.items():
        handler = getattr(module, attr, None)
        if callable(handler):
            specs.append(
                CommandSpec(name=cmd_name, handler=handler, hidden=cmd_name in _HIDDEN_COMMANDS)
            )
        else:  # pragma: no cover
            logger.error("Command %s.%s not found or not callable", module_name, attr)
    return specs


def discover_commands(
    package_path: Path, package: str = "workmux.commands"
) -> tuple[list[tuple[str, CommandModule]], list[CommandSpec]]:
    """
    Discover Typer command modules and standalone command callables.

    Returns:
        A tuple of (typer_modules, function_commands).
    """
    typer_modules: list[tuple[str, CommandModule]] = []
    function_commands: list[CommandSpec] = []

    for file in sorted(package_path.glob("*.py")):
        if file.name.startswith("_"):
            continue
        module_name = _module_name(file)
        import_path = f"{package}.{module_name}"
        module = _import_module(import_path)
        if module is None:
            continue

        if module_name in _FUNCTION_COMMANDS:
            function_commands.extend(_build_function_commands(module_name, module))
            continue

        app = getattr(module, "app", None)
        if isinstance(app, typer.Typer):
            typer_modules.append((module_name.replace("_", "-"), module))  # type: ignore[arg-type]

    return typer_modules, function_commands


__all__ = ["CommandModule", "CommandSpec", "discover_commands"]
