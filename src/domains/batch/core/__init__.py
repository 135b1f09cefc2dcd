"""Batch domain core -- pure functions for eligibility, aggregation and config parsing."""

from __future__ import annotations

from src.domains.batch.core.eligibility import (
    REASON_NO_OUTPUT,
    REASON_NO_SOURCE,
    REASON_SYNC_TARGET_MISSING,
    count_source_documents,
    evaluate,
    partition,
)
from src.domains.batch.core.errors import (
    BatchError,
    BatchNotFoundError,
    BatchStateError,
    BatchValidationError,
    EnumerationError,
    RootNotFoundError,
    TriggerError,
)
from src.domains.batch.core.staleness import is_stale, stale_targets
from src.domains.batch.core.status_aggregation import BatchProgress, aggregate, compute_progress
from src.domains.batch.core.sync_target import SyncTargetError, parse_sync_target

__all__ = [
    "REASON_NO_OUTPUT",
    "REASON_NO_SOURCE",
    "REASON_SYNC_TARGET_MISSING",
    "BatchError",
    "BatchNotFoundError",
    "BatchProgress",
    "BatchStateError",
    "BatchValidationError",
    "EnumerationError",
    "RootNotFoundError",
    "SyncTargetError",
    "TriggerError",
    "aggregate",
    "compute_progress",
    "count_source_documents",
    "evaluate",
    "is_stale",
    "parse_sync_target",
    "partition",
    "stale_targets",
]
