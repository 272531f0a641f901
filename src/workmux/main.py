from __future__ import annotations

import asyncio
import contextvars
import logging
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter
from uuid import uuid4

import typer
from rich import box
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from . import __version__
from .core.config import ConfigLoadResult, WorkmuxConfig, load_config
from .core.console import console, setup_logging
from .core.diagnostics import run_diagnostics_suite
from .core.registry import discover_commands
from .core.runtime import RuntimeContext, reset_runtime_context, set_runtime_context
from .git import find_repo_root

app = typer.Typer(help="workmux: parallel git worktrees, each in its own tmux window.")
logger = logging.getLogger(__name__)


@dataclass
class AppState:
    config: WorkmuxConfig
    config_meta: ConfigLoadResult
    logger: logging.Logger
    runtime_ctx: RuntimeContext
    runtime_token: contextvars.Token[RuntimeContext | None]


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to the global workmux config (YAML)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    cwd = Path.cwd().resolve()
    # load_config never raises; invalid documents fall back to defaults.
    loaded_config, meta = load_config(config_path=config, repo_root=find_repo_root(cwd))
    logger = setup_logging(level=loaded_config.log_level, verbose=verbose)

    runtime = RuntimeContext(
        config=loaded_config,
        config_meta=meta,
        cwd=cwd,
        trace_id=f"cli-{uuid4().hex[:8]}",
        verbose=verbose,
        config_path=config,
    )
    token = set_runtime_context(runtime)
    ctx.obj = AppState(
        config=loaded_config,
        config_meta=meta,
        logger=logger,
        runtime_ctx=runtime,
        runtime_token=token,
    )
    ctx.call_on_close(lambda: reset_runtime_context(token))

    quiet = (ctx.invoked_subcommand or "").startswith("__complete")
    if meta.error and not quiet:
        # Display "Safe Mode" Warning
        sources = ", ".join(str(path) for path in [meta.global_path, meta.project_path] if path)
        console.print(
            Panel(
                f"[bold red]Configuration Error - Safe Mode Active[/bold red]\n\n"
                f"Failed to load {sources}:\n{meta.error}\n\n"
                f"[yellow]Using default settings. Fix the file or run `workmux config`.[/yellow]",
                border_style="red",
            )
        )
    else:
        logger.debug(
            "Loaded configuration from %s (env overrides: %s, trace: %s)",
            [str(path) for path in meta.sources] or "defaults",
            sorted(meta.env_overrides),
            runtime.trace_id,
        )


@app.command("doctor")
def doctor(
    ctx: typer.Context,
    tool: list[str] | None = typer.Option(
        None, "--tool", "-t", help="Check only specific tools (name or binary)."
    ),
) -> None:
    """Inspect external dependencies in parallel."""
    state: AppState = ctx.obj
    state.logger.debug("Running doctor for tools: %s", tool or "all")

    diag_results, tool_results = asyncio.run(
        run_diagnostics_suite(
            config=state.config,
            meta=state.config_meta,
            cwd=state.runtime_ctx.cwd,
            tool_names=tool,
        )
    )

    tree = Tree("System Health")
    style_map = {"ok": "green", "warn": "yellow", "error": "red", "missing": "red"}
    diag_branch = tree.add("Deep Checks")
    for name, status, message in diag_results:
        style = style_map.get(status, "white")
        diag_branch.add(f"[{style}]{status}[/{style}] {name}: {message}")

    tools_branch = tree.add("Binaries")
    for result in tool_results:
        style = style_map.get(result.status, "white")
        message = result.version or result.message or result.tool.install_hint or ""
        tools_branch.add(
            f"[{style}]{result.status}[/{style}] {result.tool.name} ({result.tool.binary}) {message}".strip()
        )

    console.print(tree)
    if any(result.status == "missing" for result in tool_results):
        raise typer.Exit(code=1)


@app.command("config")
def show_config(ctx: typer.Context) -> None:
    """Show the active configuration and where it came from."""
    state: AppState = ctx.obj
    config = state.config
    meta = state.config_meta

    table = Table(title="Config", box=box.SIMPLE, expand=True)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    for key, value in config.model_dump(mode="json").items():
        table.add_row(key, str(value))

    console.print(table)

    meta_lines = [
        f"Global: {meta.global_path}",
        "Global loaded: yes" if meta.global_loaded else "Global loaded: no",
        f"Project: {meta.project_path or '-'}",
        "Project loaded: yes" if meta.project_loaded else "Project loaded: no",
    ]

    if meta.env_overrides:
        meta_lines.append("Env overrides: " + ", ".join(sorted(meta.env_overrides)))
    if meta.error:
        meta_lines.append(f"[red]Error: {meta.error}[/red]")

    console.print(Panel("\n".join(meta_lines), title="Config source", box=box.SIMPLE))


@app.command("version")
def show_version() -> None:
    """Print the workmux version."""
    console.print(__version__)


def _register_commands() -> None:
    commands_path = Path(__file__).resolve().parent / "commands"
    typer_modules, function_commands = discover_commands(commands_path)

    for name, module in typer_modules:
        app.add_typer(module.app, name=name)

    for spec in function_commands:
        app.command(spec.name, hidden=spec.hidden)(spec.handler)


def _register_commands_with_timing() -> None:
    start = perf_counter()
    _register_commands()
    elapsed = perf_counter() - start
    logger.debug("Command registry initialized in %.3f seconds", elapsed)


_register_commands_with_timing()


def cli() -> None:
    app()


if __name__ == "__main__":
    cli()
