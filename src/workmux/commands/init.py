"""Project initialization: write a commented `.workmux.yaml`."""

from __future__ import annotations

from pathlib import Path

import typer
from rich import box
from rich.panel import Panel

from workmux.core.config import EXAMPLE_CONFIG
from workmux.core.console import console
from workmux.core.decorators import handle_exceptions
from workmux.core.result import AlreadyExistsError
from workmux.core.runtime import get_runtime
from workmux.git import find_repo_root

PROJECT_CONFIG_FILE = ".workmux.yaml"


@handle_exceptions
def init(
    ctx: typer.Context,
    directory: Path | None = typer.Argument(
        None, help="Where to write the file (default: the repository root)."
    ),
) -> None:
    """Write an example project configuration file."""
    _ = ctx
    cwd = get_runtime().cwd
    root = directory.expanduser() if directory else (find_repo_root(cwd) or cwd)
    target = root / PROJECT_CONFIG_FILE
    if target.exists():
        raise AlreadyExistsError(f"{target} already exists", context={"path": str(target)})

    target.write_text(EXAMPLE_CONFIG, encoding="utf-8")
    console.print(
        Panel(
            f"Wrote [bold]{target}[/bold]\nUncomment the options you want to change.",
            title="workmux init",
            box=box.SIMPLE,
        )
    )
