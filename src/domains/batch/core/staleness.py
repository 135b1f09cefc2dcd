"""Staleness checks for batches whose external jobs appear stuck."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from src.models.batch_record import BatchStatus

if TYPE_CHECKING:
    from src.models.batch_record import BatchRecord, OutstandingTarget


def stale_targets(
    record: BatchRecord, threshold: timedelta, now: datetime | None = None
) -> list[OutstandingTarget]:
    """Return dispatched targets that have been in flight longer than threshold."""
    current = now or datetime.now(UTC)
    return [
        target
        for target in record.details.outstanding
        if target.dispatched_at is not None and current - target.dispatched_at > threshold
    ]


def is_stale(record: BatchRecord, threshold: timedelta, now: datetime | None = None) -> bool:
    """Whether a non-terminal batch looks stuck.

    A running batch is stale when any in-flight target exceeds the threshold.
    A batch with nothing dispatched yet is stale when it has been waiting
    (since start, or since creation if never started) longer than threshold.
    Terminal batches are never stale.
    """
    if record.status.is_terminal:
        return False
    current = now or datetime.now(UTC)
    if stale_targets(record, threshold, current):
        return True
    if any(target.dispatched_at is not None for target in record.details.outstanding):
        return False
    reference = record.started_at if record.status == BatchStatus.RUNNING else record.created_at
    if reference is None:
        reference = record.created_at
    return current - reference > threshold
