"""CLI part subcommands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from partvault.core.exceptions import NotFoundError, PartVaultError
from partvault.core.models import AppConfig, Part, StorageConfig, StorageType, human_size

parts_app = typer.Typer(no_args_is_help=True, rich_markup_mode="rich")
console = Console()

_StorageOpt = typer.Option(None, "--storage", "-s", help="Storage backend (overrides config).")
_RootOpt = typer.Option(None, "--root-dir", "-r", help="Root directory inside the store.")


def _storage_config(
        ctx: typer.Context,
        storage: StorageType | None,
        root_dir: str | None,
        config_path: Path | None = None,
) -> StorageConfig:
    """Resolve the storage config from file, environment and CLI overrides."""
    from partvault.core.config import load_config
    from partvault.logging import setup_logging_from_config

    obj = ctx.obj or {}
    try:
        app_config: AppConfig = load_config(config_path or obj.get("config_path"))
    except PartVaultError as exc:
        console.print(f"[red]✗ {exc}[/red]")
        raise typer.Exit(code=1) from exc
    if config_path is None:
        setup_logging_from_config(
            app_config.logging,
            verbose=obj.get("verbose", False),
            log_json=obj.get("log_json", False),
        )
    overrides: dict = {}
    if storage is not None:
        overrides["type"] = storage
    if root_dir is not None:
        overrides["root_dir"] = root_dir
    return app_config.storage.model_copy(update=overrides)


@contextmanager
def _opened(config: StorageConfig) -> Iterator:
    """Yield an initialized backend, turning partvault errors into exit code 1."""
    from partvault.storage import get_storage

    try:
        with get_storage(config) as backend:
            yield backend
    except PartVaultError as exc:
        console.print(f"[red]✗ {exc}[/red]")
        raise typer.Exit(code=1) from exc


def _find_part(backend, path: str) -> Part:
    for part in backend.list_parts(path):
        if part.path == path:
            return part
    raise NotFoundError(f"{backend}: part not found: {path}")


@parts_app.command("ls")
def parts_list(
        ctx: typer.Context,
        prefix: str = typer.Argument("", help="Only list parts under this prefix."),
        storage: StorageType | None = _StorageOpt,
        root_dir: str | None = _RootOpt,
) -> None:
    """List parts in the configured backend."""
    config = _storage_config(ctx, storage, root_dir)
    with _opened(config) as backend:
        table = Table(title=str(backend))
        table.add_column("Path", style="cyan")
        table.add_column("Size", justify="right")
        table.add_column("Fingerprint", style="dim")

        count = 0
        total = 0
        for part in backend.list_parts(prefix):
            table.add_row(part.path, human_size(part.size), part.fingerprint)
            count += 1
            total += part.size

    if count == 0:
        console.print("[yellow]No parts found.[/yellow]")
        return
    console.print(table)
    console.print(f"{count} part(s), {human_size(total)}")


@parts_app.command("put")
def parts_put(
        ctx: typer.Context,
        source: Path = typer.Argument(..., exists=True, dir_okay=False, help="Local file to upload."),
        path: str = typer.Argument(..., help="Part path relative to the root dir."),
        storage: StorageType | None = _StorageOpt,
        root_dir: str | None = _RootOpt,
) -> None:
    """Upload a local file as a part."""
    config = _storage_config(ctx, storage, root_dir)
    try:
        part = Part(path=path, size=source.stat().st_size)
    except ValueError as exc:
        console.print(f"[red]✗ Invalid part path: {path}[/red]")
        raise typer.Exit(code=1) from exc
    with _opened(config) as backend, open(source, "rb") as f:
        backend.upload_part(part, f)
    console.print(f"[green]✓[/green] Uploaded {part.path} ({human_size(part.size)})")


@parts_app.command("get")
def parts_get(
        ctx: typer.Context,
        path: str = typer.Argument(..., help="Part path relative to the root dir."),
        dest: Path = typer.Argument(..., help="Local destination file."),
        storage: StorageType | None = _StorageOpt,
        root_dir: str | None = _RootOpt,
) -> None:
    """Download a part to a local file."""
    config = _storage_config(ctx, storage, root_dir)
    with _opened(config) as backend:
        part = _find_part(backend, path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        with open(dest, "wb") as f:
            backend.download_part(part, f)
    console.print(f"[green]✓[/green] Downloaded {part.path} to {dest}")


@parts_app.command("cp")
def parts_copy(
        ctx: typer.Context,
        path: str = typer.Argument(..., help="Part path relative to the root dir."),
        dest_config: Path = typer.Option(
            ..., "--dest-config", exists=True, dir_okay=False, help="Config file of the destination backend."
        ),
        storage: StorageType | None = _StorageOpt,
        root_dir: str | None = _RootOpt,
) -> None:
    """Copy a part to the backend described by another config file."""
    src_config = _storage_config(ctx, storage, root_dir)
    dst_config = _storage_config(ctx, None, None, config_path=dest_config)
    with _opened(src_config) as src, _opened(dst_config) as dst:
        part = _find_part(src, path)
        src.copy_part(dst, part)
        console.print(f"[green]✓[/green] Copied {part.path} from {src} to {dst}")


@parts_app.command("rm")
def parts_remove(
        ctx: typer.Context,
        path: str = typer.Argument(..., help="Part or file path relative to the root dir."),
        storage: StorageType | None = _StorageOpt,
        root_dir: str | None = _RootOpt,
) -> None:
    """Delete a part or control file. Absent paths are not an error."""
    config = _storage_config(ctx, storage, root_dir)
    with _opened(config) as backend:
        backend.delete_file(path)
    console.print(f"[green]✓[/green] Deleted {path}")


@parts_app.command("has")
def parts_has(
        ctx: typer.Context,
        path: str = typer.Argument(..., help="Part or file path relative to the root dir."),
        storage: StorageType | None = _StorageOpt,
        root_dir: str | None = _RootOpt,
) -> None:
    """Exit 0 if the path exists, 1 otherwise."""
    config = _storage_config(ctx, storage, root_dir)
    with _opened(config) as backend:
        found = backend.has_file(path)
    if found:
        console.print(f"[green]✓[/green] {path} exists")
        return
    console.print(f"[yellow]{path} not found[/yellow]")
    raise typer.Exit(code=1)


@parts_app.command("prune")
def parts_prune(
        ctx: typer.Context,
        storage: StorageType | None = _StorageOpt,
        root_dir: str | None = _RootOpt,
) -> None:
    """Remove empty directories left behind by deleted parts."""
    config = _storage_config(ctx, storage, root_dir)
    with _opened(config) as backend:
        backend.remove_empty_dirs()
    console.print("[green]✓[/green] Empty directories removed")
