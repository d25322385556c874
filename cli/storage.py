"""``flask storage ...`` operator commands."""

from __future__ import annotations

import json

import click
from flask.cli import AppGroup

from bounded_contexts.storage.application import (
    CleanupResultSchema,
    MetricsSummarySchema,
    QuotaStatusSchema,
    UsageReportSchema,
)
from bounded_contexts.storage.domain import CleanupResult, StorageException
from webapp.extensions import get_storage_services

storage_cli = AppGroup("storage", help="Storage governance commands.")


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _echo_cleanup(name: str, result: CleanupResult) -> None:
    mode = "DRY RUN" if result.dry_run else "APPLIED"
    click.echo(f"[{mode}] provider={name} orphans={result.scanned} "
               f"cleaned={result.cleaned} skipped={result.skipped} failed={result.failed}")
    for orphan in result.orphaned:
        suffix = f" (file {orphan.file_id})" if orphan.file_id else ""
        click.echo(f"  {orphan.type.value:<12} {orphan.path}{suffix}")
    for error in result.errors:
        click.echo(f"  error: {error.file}: {error.error}", err=True)


@storage_cli.command("reconcile")
@click.option("--provider", "provider_name", default=None, help="Provider to reconcile (default: every enabled provider).")
@click.option("--apply", "apply_changes", is_flag=True, help="Delete orphans instead of reporting them.")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
def reconcile_command(provider_name: str | None, apply_changes: bool, as_json: bool) -> None:
    """Compare the registry with provider contents and report or clean orphans."""

    services = get_storage_services()
    dry_run = not apply_changes
    try:
        if provider_name:
            results = {provider_name: services.reconciler.reconcile(provider_name, dry_run=dry_run)}
        else:
            results = services.reconciler.reconcile_all(dry_run=dry_run)
    except StorageException as exc:
        raise click.ClickException(f"{exc.code}: {exc.message}") from exc

    if as_json:
        schema = CleanupResultSchema()
        _echo_json({name: schema.dump(result) for name, result in results.items()})
    else:
        for name, result in results.items():
            _echo_cleanup(name, result)

    if any(result.errors for result in results.values()):
        click.get_current_context().exit(1)


@storage_cli.command("metrics")
@click.option("--reset", is_flag=True, help="Clear the collected metrics after printing them.")
@click.option("--raw", is_flag=True, help="Print the full snapshot including latency samples.")
def metrics_command(reset: bool, raw: bool) -> None:
    """Print the metrics summary as JSON."""

    metrics = get_storage_services().metrics
    if raw:
        click.echo(metrics.to_json())
    else:
        _echo_json(MetricsSummarySchema().dump(metrics.get_summary()))
    if reset:
        metrics.reset()
        click.echo("Metrics reset.", err=True)


@storage_cli.command("quota")
@click.option("--folder", default=None, help="Show the quota of one folder.")
def quota_command(folder: str | None) -> None:
    """Print global and folder quota status."""

    services = get_storage_services()
    schema = QuotaStatusSchema()
    try:
        if folder:
            if services.config.current.folder(folder) is None:
                raise click.ClickException(f"Unknown folder '{folder}'")
            folders = [folder]
        else:
            folders = sorted(services.config.current.folders)
        global_status = services.quota.get_global_quota()
        payload = {
            "enabled": services.quota.is_enabled(),
            "global": schema.dump(global_status) if global_status else None,
            "folders": {},
        }
        for name in folders:
            status = services.quota.get_folder_quota(name)
            payload["folders"][name] = schema.dump(status) if status else None
    except StorageException as exc:
        raise click.ClickException(f"{exc.code}: {exc.message}") from exc
    _echo_json(payload)


@storage_cli.command("usage")
def usage_command() -> None:
    """Print storage usage per folder and provider."""

    try:
        report = get_storage_services().usage.overall_usage()
    except StorageException as exc:
        raise click.ClickException(f"{exc.code}: {exc.message}") from exc
    _echo_json(UsageReportSchema().dump(report))


__all__ = ["storage_cli"]
