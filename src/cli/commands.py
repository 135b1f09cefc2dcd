"""CLI command implementations for the batch orchestrator."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import click

from src.models.batch_record import BatchKind
from src.models.config import Config
from src.services.database import Database
from src.utils.logger import configure_logging

if TYPE_CHECKING:
    from src.domains.batch.services.batch_service import BatchService
    from src.models.batch_record import BatchRecord

_KIND_CHOICE = click.Choice([kind.value for kind in BatchKind])


def _get_config() -> Config:
    """Load configuration from .env file."""
    return Config()  # type: ignore[call-arg]


def _get_db(config: Config) -> Database:
    """Initialize database with schema."""
    db = Database(db_path=config.database_path)
    db.init_db()
    return db


def _get_services(config: Config, db: Database) -> dict[BatchKind, BatchService]:
    from src.domains.batch.services.factory import build_batch_services

    return build_batch_services(config, db)


def _close(services: dict[BatchKind, BatchService], db: Database) -> None:
    for service in services.values():
        service.executor.shutdown(cancel_running=False, wait=False)
    db.close()


def _print_summary(title: str, stats: dict[str, Any]) -> None:
    """Print a formatted summary of a batch."""
    click.echo(f"\n[INFO] {title}")
    for key, value in stats.items():
        click.echo(f"  {key}: {value}")


def _batch_stats(record: BatchRecord) -> dict[str, Any]:
    stats: dict[str, Any] = {
        "kind": record.kind.value,
        "workflow_key": record.workflow_key or "-",
        "root_target_id": record.root_target_id,
        "status": record.status.value,
        "progress": f"{record.progress:.1f}%",
        "total": record.total,
        "success": record.success_count,
        "failed": record.failed_count,
        "skipped": record.skipped_count,
        "created_at": record.created_at.isoformat(),
        "started_at": record.started_at.isoformat() if record.started_at else "-",
        "finished_at": record.finished_at.isoformat() if record.finished_at else "-",
    }
    if record.error_message:
        stats["error_message"] = record.error_message
    return stats


@click.command()
def init_db() -> None:
    """Create the batch database schema."""
    config = _get_config()
    configure_logging(config.log_level, json_output=config.log_json)
    db = _get_db(config)
    click.echo(f"[SUCCESS] Database ready at {config.database_path}")
    db.close()


@click.command()
@click.option("--host", default=None, help="Bind address (defaults to API_HOST)")
@click.option("--port", default=None, type=int, help="Port (defaults to API_PORT)")
def serve(host: str | None, port: int | None) -> None:
    """Run the HTTP API."""
    import uvicorn

    from src.api.app import create_app

    config = _get_config()
    configure_logging(config.log_level, json_output=config.log_json)
    app = create_app(config)
    uvicorn.run(
        app,
        host=host or config.api_host,
        port=port or config.api_port,
        log_config=None,
    )


@click.command()
def check_health() -> None:
    """Check that the directory and Prefect are reachable."""
    from src.utils.health_checks import check_directory_health, check_prefect_health

    config = _get_config()
    configure_logging(config.log_level, json_output=config.log_json)
    results = {
        "directory": check_directory_health(config.directory_base_url, config.directory_api_key),
        "prefect": check_prefect_health(config.prefect_base_url),
    }
    for name, healthy in results.items():
        click.echo(f"  {name}: {'ok' if healthy else 'UNREACHABLE'}")
    if not all(results.values()):
        raise SystemExit(1)


@click.command()
@click.argument("batch_id")
@click.option("--json", "as_json", is_flag=True, help="Print the full record as JSON")
def show_batch(batch_id: str, as_json: bool) -> None:
    """Display a batch and its per-target results."""
    from src.domains.batch.core.errors import BatchNotFoundError
    from src.domains.batch.repositories.batch_repository import BatchRepository

    config = _get_config()
    configure_logging(config.log_level, json_output=config.log_json)
    db = _get_db(config)

    try:
        record = BatchRepository(db).get(batch_id)
    except BatchNotFoundError:
        click.echo(f"[ERROR] Batch '{batch_id}' not found.")
        db.close()
        raise SystemExit(1) from None

    if as_json:
        click.echo(json.dumps(record.model_dump(mode="json"), indent=2))
        db.close()
        return

    _print_summary(f"Batch {batch_id}", _batch_stats(record))
    if record.details.target_results:
        click.echo("  Targets:")
        for result in record.details.target_results:
            note = result.error or result.skip_reason or ""
            click.echo(
                f"    - [{result.outcome.value}] {result.target_id} "
                f"{result.display_path} {note}".rstrip()
            )
    if record.details.outstanding:
        click.echo(f"  Outstanding: {len(record.details.outstanding)}")
    db.close()


@click.command()
@click.option("--kind", type=_KIND_CHOICE, default=None, help="Only this batch kind")
@click.option("--workflow-key", default=None, help="Only batches of this workflow")
@click.option("--limit", default=20, type=int, help="Page size (max 100)")
@click.option("--offset", default=0, type=int, help="Rows to skip")
def list_batches(kind: str | None, workflow_key: str | None, limit: int, offset: int) -> None:
    """List batches, newest first."""
    from src.domains.batch.repositories.batch_repository import BatchRepository
    from src.domains.batch.services.batch_service import clamp_limit

    config = _get_config()
    configure_logging(config.log_level, json_output=config.log_json)
    db = _get_db(config)

    items, total = BatchRepository(db).list(
        kind=BatchKind(kind) if kind else None,
        workflow_key=workflow_key,
        limit=clamp_limit(limit),
        offset=max(offset, 0),
    )
    if not items:
        click.echo("[INFO] No batches found.")
        db.close()
        return

    click.echo(f"\n[INFO] {len(items)} of {total} batches")
    for record in items:
        click.echo(
            f"  {record.batch_id}  {record.kind.value:<8} {record.status.value:<9} "
            f"{record.progress:5.1f}%  root={record.root_target_id} "
            f"ok={record.success_count} failed={record.failed_count} "
            f"skipped={record.skipped_count}  {record.created_at:%Y-%m-%d %H:%M}"
        )
    db.close()


@click.command()
@click.argument("batch_id")
def cancel_batch(batch_id: str) -> None:
    """Cancel a batch left pending or running by a stopped server."""
    from src.domains.batch.core.errors import BatchNotFoundError, BatchStateError
    from src.domains.batch.repositories.batch_repository import BatchRepository

    config = _get_config()
    configure_logging(config.log_level, json_output=config.log_json)
    db = _get_db(config)
    services = _get_services(config, db)

    try:
        kind = BatchRepository(db).get(batch_id).kind
        record = services[kind].cancel_batch(batch_id)
    except (BatchNotFoundError, BatchStateError) as e:
        click.echo(f"[ERROR] {e}")
        _close(services, db)
        raise SystemExit(1) from None

    _print_summary(f"Batch {batch_id} cancelled", _batch_stats(record))
    _close(services, db)


@click.command()
@click.option("--kind", type=_KIND_CHOICE, default=None, help="Only this batch kind")
def list_stale(kind: str | None) -> None:
    """List active batches whose external jobs look stuck."""
    config = _get_config()
    configure_logging(config.log_level, json_output=config.log_json)
    db = _get_db(config)
    services = _get_services(config, db)

    kinds = [BatchKind(kind)] if kind else list(BatchKind)
    stale = [record for k in kinds for record in services[k].list_stale()]
    if not stale:
        click.echo(f"[INFO] No batches running longer than {config.stale_after_minutes} minutes.")
        _close(services, db)
        return

    click.echo(f"\n[WARNING] {len(stale)} stale batches")
    for record in stale:
        started = record.started_at or record.created_at
        click.echo(
            f"  {record.batch_id}  {record.kind.value:<8} {record.status.value:<8} "
            f"since {started:%Y-%m-%d %H:%M}  in_flight={len(record.details.outstanding)}"
        )
    _close(services, db)
