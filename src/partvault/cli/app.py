"""Main Typer application entry point for the partvault CLI."""

from __future__ import annotations

from pathlib import Path

import typer

from partvault import __version__
from partvault.cli.config_cmd import config_app
from partvault.cli.parts import parts_app
from partvault.core.models import LogFormat
from partvault.logging import setup_logging

app = typer.Typer(
    name="partvault",
    help="Inspect and move backup parts between storage backends.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=True,
)

# Register sub-command groups
app.add_typer(parts_app, name="parts", help="Part operations")
app.add_typer(config_app, name="config", help="Configuration management")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"partvault {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
        ctx: typer.Context,
        version: bool = typer.Option(
            False,
            "--version",
            "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
        verbose: bool = typer.Option(
            False,
            "--verbose",
            "-v",
            help="Enable verbose (DEBUG) logging.",
        ),
        log_json: bool = typer.Option(
            False,
            "--log-json",
            help="Output logs in JSON format.",
        ),
        config_path: Path | None = typer.Option(
            None,
            "--config",
            "-c",
            help="Config file to use instead of the default location.",
            envvar="PARTVAULT_CONFIG",
        ),
) -> None:
    """partvault: remote part storage for incremental backups."""
    level = "DEBUG" if verbose else "INFO"
    fmt = LogFormat.JSON if log_json else LogFormat.CONSOLE
    setup_logging(level=level, log_format=fmt)
    ctx.obj = {"config_path": config_path, "verbose": verbose, "log_json": log_json}


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
