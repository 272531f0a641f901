"""Package entry point for running workmux as a module.

Allows the package to be executed via `python -m workmux`.
"""

from __future__ import annotations

from .main import cli


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
