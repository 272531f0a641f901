"""Maintenance of the Claude CLI state file."""

from __future__ import annotations

import typer

from workmux.commands._support import unwrap
from workmux.core.console import console
from workmux.core.decorators import handle_exceptions
from workmux.workflow.prune import prune_claude_projects

app = typer.Typer(help="Claude agent maintenance.")


@app.callback()
def _claude_callback(ctx: typer.Context) -> None:
    """Entry point for Claude maintenance commands."""


@handle_exceptions
def prune(ctx: typer.Context) -> None:
    """Remove ~/.claude.json project entries whose directory no longer exists."""
    _ = ctx
    report = unwrap(prune_claude_projects())

    if not report.found:
        console.print(f"No Claude configuration found at {report.path}")
        return
    if not report.has_projects:
        console.print("No projects found in the Claude configuration")
        return
    if not report.removed:
        console.print(f"[green]Nothing to prune[/green] ({report.total} project entries)")
        return

    for key in report.removed:
        console.print(f"  [red]-[/red] {key}", highlight=False)
    console.print(
        f"[green]✓[/green] Pruned {len(report.removed)} of {report.total} entries; "
        f"backup at {report.backup}"
    )


app.command("prune")(prune)
