"""CLI entry point for the batch orchestrator."""

from __future__ import annotations

import click

from src.cli.commands import (
    cancel_batch,
    check_health,
    init_db,
    list_batches,
    list_stale,
    serve,
    show_batch,
)


@click.group()
def cli() -> None:
    """Batch workflow and sync orchestrator."""


cli.add_command(init_db)
cli.add_command(serve)
cli.add_command(check_health)
cli.add_command(show_batch)
cli.add_command(list_batches)
cli.add_command(cancel_batch)
cli.add_command(list_stale)
