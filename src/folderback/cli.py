"""Command line interface for folderback."""

from __future__ import annotations

import difflib
from pathlib import Path
from typing import Any, NoReturn

import click
import yaml
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from folderback.backup import BackupRunSummary, BackupService
from folderback.config import (
    ConfigError,
    ConfigManager,
    FolderbackConfig,
    assign_nested,
    resolve_with_precedence,
)
from folderback.log_setup import configure_logging
from folderback.restore import BasicRestore, RestoreGroup, RestoreGrouper
from folderback.retention import RetentionReport, RetentionSweeper
from folderback.store import StoreError, create_store

console = Console()


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool = False,
    original: Exception | None = None,
) -> NoReturn:
    """Emit a standardized error and terminate the command.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """
    if json_output:
        console.print_json(data={"error": {"code": code, "message": message}})
        raise SystemExit(1)

    raise click.ClickException(message) from original


def _manager(ctx: click.Context) -> ConfigManager:
    config_path = (ctx.obj or {}).get("config_path")
    return ConfigManager(Path(config_path) if config_path else None)


def _load_config(ctx: click.Context, *, json_output: bool = False) -> FolderbackConfig:
    """Load configuration and configure logging for a runtime command."""
    try:
        config = _manager(ctx).load()
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
    configure_logging(config.logging)
    return config


def _emit_backup_summary(summary: BackupRunSummary) -> None:
    console.print(f"[green]Backed up {summary.processed} change(s).[/green]")
    for relative_path in summary.skipped:
        console.print(f"[yellow]Skipped {relative_path}.[/yellow]")
    for relative_path in summary.locked:
        console.print(f"[yellow]Still locked, not backed up: {relative_path}.[/yellow]")


def _retention_payload(reports: list[RetentionReport]) -> dict[str, Any]:
    return {
        "containers": [
            {"container": report.container, "kept": report.kept, "deleted": report.deleted}
            for report in reports
        ]
    }


def _groups_table(container: str, groups: list[RestoreGroup]) -> Table:
    table = Table(title=f"Restore plan for {container}", show_lines=False)
    table.add_column("Logical name", style="bold")
    table.add_column("Backups")
    table.add_column("Logs")
    for group in groups:
        table.add_row(
            group.logical_name,
            "\n".join(backup.file_name for backup in group.backups),
            "\n".join(log.file_name for log in group.logs) or "-",
        )
    return table


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="folderback")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=str),
    help="Configuration file to use instead of ~/.folderback/config.yaml.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """Folderback backs up watched folders to a tagged object store."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.option("--once", is_flag=True, help="Back up current contents once and exit.")
@click.pass_context
def backup(ctx: click.Context, once: bool) -> None:
    """Watch configured folders and back up every change.

    Args:
        ctx: Click context carrying the global options.
        once: When True, back up existing files and exit without watching.

    Raises:
        click.ClickException: If configuration is invalid or the backend fails.
    """
    config = _load_config(ctx)
    if not config.backup.folders:
        raise click.ClickException("No folders configured under backup.folders.")

    try:
        service = BackupService(config.backup, create_store(config.store))
        if once:
            _emit_backup_summary(service.process_once())
            return

        monitored = ", ".join(folder.folder_path for folder in config.backup.folders)
        console.print(f"[cyan]Watching {monitored}. Press Ctrl+C to stop.[/cyan]")
        try:
            service.run()
        except KeyboardInterrupt:
            service.stop()
            console.print("[yellow]Backup stopped by user request.[/yellow]")
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", original=exc)
    except StoreError as exc:
        _handle_cli_error(str(exc), code="store_error", original=exc)


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit JSON describing the sweep.")
@click.pass_context
def retention(ctx: click.Context, json_output: bool) -> None:
    """Delete backups older than each container's retention period.

    Raises:
        click.ClickException: If configuration is invalid or the backend fails.
    """
    config = _load_config(ctx, json_output=json_output)
    try:
        reports = RetentionSweeper(create_store(config.store)).run(config.retention)
    except StoreError as exc:
        _handle_cli_error(str(exc), code="store_error", json_output=json_output, original=exc)

    if json_output:
        console.print_json(data=_retention_payload(reports))
        return

    if not reports:
        console.print("[yellow]No retention folders configured.[/yellow]")
        return

    table = Table(title="Retention sweep")
    table.add_column("Container", style="bold")
    table.add_column("Kept", justify="right")
    table.add_column("Deleted", justify="right")
    for report in reports:
        table.add_row(report.container, str(len(report.kept)), str(len(report.deleted)))
    console.print(table)


@cli.command()
@click.option("--basic", is_flag=True, help="Run basic restores instead of grouped restore jobs.")
@click.option("--dry-run", is_flag=True, help="Show the selected groups without downloading.")
@click.pass_context
def restore(ctx: click.Context, basic: bool, dry_run: bool) -> None:
    """Restore backups from the object store.

    Args:
        ctx: Click context carrying the global options.
        basic: When True, restore every object to its original relative path.
        dry_run: When True, print the grouped restore plan only.

    Raises:
        click.ClickException: If options conflict, configuration is invalid, or the
            backend fails.
    """
    if basic and dry_run:
        raise click.ClickException("--dry-run is only supported for grouped restores.")

    config = _load_config(ctx)
    try:
        store = create_store(config.store)
        if basic:
            if not config.restore.basic:
                raise click.ClickException("No folders configured under restore.basic.")
            written = BasicRestore(store).run(config.restore)
            console.print(f"[green]Restored {len(written)} file(s).[/green]")
            return

        if not config.restore.jobs:
            raise click.ClickException("No restore jobs configured under restore.jobs.")

        grouper = RestoreGrouper(store)
        restored = 0
        for job in config.restore.jobs:
            groups = grouper.build_groups(job)
            if dry_run:
                if groups:
                    console.print(_groups_table(job.backup_container, groups))
                else:
                    console.print(
                        f"[yellow]Nothing to restore from {job.backup_container}.[/yellow]"
                    )
                continue
            restored += len(grouper.restore(job, groups))
        if not dry_run:
            console.print(f"[green]Restored {restored} file(s).[/green]")
    except StoreError as exc:
        _handle_cli_error(str(exc), code="store_error", original=exc)


@cli.group()
def config() -> None:
    """Manage folderback configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
@click.pass_context
def config_view(ctx: click.Context, no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules.

    Raises:
        click.ClickException: If configuration cannot be loaded.
    """
    manager = _manager(ctx)
    try:
        manager.ensure_exists()
        loaded = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(loaded.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY.

    Args:
        ctx: Click context carrying the global options.
        key: Dotted path describing the configuration field to update.
        value: YAML-literal value to write into the configuration file.

    Raises:
        click.ClickException: If parsing, assignment, or validation fails.
    """
    manager = _manager(ctx)
    manager.ensure_exists()

    before = manager.read_text().splitlines()
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException(
            "KEY must specify a dotted path such as 'backup.poll_interval_seconds'."
        )

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    try:
        file_data = manager.load_file_overrides()
        assign_nested(file_data, segments, parsed_value)
        resolve_with_precedence(defaults=FolderbackConfig(), file_overrides=file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(file_data)
    after = manager.read_text().splitlines()

    diff = list(
        difflib.unified_diff(
            [line for line in before if not line.startswith("# Last updated:")],
            [line for line in after if not line.startswith("# Last updated:")],
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
    )
    if not diff:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()
