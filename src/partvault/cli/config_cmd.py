"""CLI config subcommands for managing partvault configuration."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.syntax import Syntax

from partvault.core.models import StorageType

config_app = typer.Typer(no_args_is_help=True, rich_markup_mode="rich")
console = Console()


@config_app.command("init")
def config_init(
        path: Path | None = typer.Option(
            None, "--path", help="Custom config file location."
        ),
        storage: StorageType = typer.Option(
            StorageType.LOCAL, "--storage", "-s", help="Storage backend."
        ),
        root_dir: str = typer.Option("/", "--root-dir", "-r", help="Root directory inside the store."),
        local_path: Path = typer.Option(Path("./parts"), "--local-path", help="Local storage directory."),
        s3_bucket: str | None = typer.Option(None, "--s3-bucket", help="S3 bucket name."),
        s3_region: str = typer.Option("us-east-1", "--s3-region", help="AWS region."),
        s3_endpoint: str | None = typer.Option(None, "--s3-endpoint", help="S3 endpoint URL."),
        azure_container: str | None = typer.Option(None, "--azure-container", help="Azure container name."),
        azure_account: str | None = typer.Option(None, "--azure-account", help="Azure storage account."),
        force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file."),
) -> None:
    """Write a configuration file.

    Credentials are not written; they are read from AWS_ACCESS_KEY_ID /
    AWS_SECRET_ACCESS_KEY or AZURE_STORAGE_ACCOUNT / AZURE_STORAGE_ACCESS_KEY.
    """
    from partvault.core.config import CONFIG_FILE, save_config_file
    from partvault.core.models import AppConfig, StorageConfig

    target = path or CONFIG_FILE

    if target.exists() and not force:
        overwrite = typer.confirm(f"Config already exists at {target}. Overwrite?")
        if not overwrite:
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit()

    config = AppConfig(
        storage=StorageConfig(
            type=storage,
            root_dir=root_dir,
            local_path=local_path,
            s3_bucket=s3_bucket,
            s3_region=s3_region,
            s3_endpoint_url=s3_endpoint,
            azure_container=azure_container,
            azure_account_name=azure_account,
        ),
    )
    saved_path = save_config_file(config, target)
    console.print(f"[green]✓[/green] Config saved to: {saved_path}")


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Print the effective configuration (file + environment), secrets masked."""
    from partvault.core.config import dump_config, load_config
    from partvault.core.exceptions import ConfigError

    config_path = (ctx.obj or {}).get("config_path")
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        console.print(f"[red]✗ {exc}[/red]")
        raise typer.Exit(code=1) from exc
    console.print(Syntax(dump_config(config), "toml", theme="monokai"))


@config_app.command("path")
def config_path_cmd() -> None:
    """Show the default config file location."""
    from partvault.core.config import CONFIG_DIR, CONFIG_FILE

    console.print("[bold]partvault paths:[/bold]")
    console.print(f"  Config dir:    {CONFIG_DIR}")
    console.print(f"  Config file:   {CONFIG_FILE}")
