"""Status aggregation: per-target outcomes to batch status and progress."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from src.models.batch_record import BatchStatus, TargetOutcome

if TYPE_CHECKING:
    from collections.abc import Iterable

    from src.models.batch_record import TargetResult


@dataclass(frozen=True)
class BatchProgress:
    """Aggregate view of a batch's outcomes."""

    status: BatchStatus
    success_count: int
    failed_count: int
    skipped_count: int
    progress: float

    @property
    def done_count(self) -> int:
        return self.success_count + self.failed_count + self.skipped_count


def compute_progress(done: int, total: int) -> float:
    """Percentage of targets done; 0 for an empty batch."""
    if total == 0:
        return 0.0
    return round(100.0 * done / total, 2)


def aggregate(
    target_results: Iterable[TargetResult],
    total: int,
    *,
    started: bool = True,
    cancelled: bool = False,
    fail_on_target_failure: bool = False,
) -> BatchProgress:
    """Map recorded target outcomes to a batch status and counters.

    Results are treated as a set keyed by target_id; a later entry for the
    same target replaces an earlier one.

    Rules:
    - Fewer outcomes than total: RUNNING once dispatch has started, else PENDING.
    - All outcomes recorded and the batch was cancelled: CANCELLED.
    - All outcomes recorded, any failure, and fail_on_target_failure: FAILED.
    - Otherwise COMPLETED. Individual target failures alone never fail a
      batch under the default policy; callers read failed_count instead.
    """
    latest: dict[int, TargetOutcome] = {}
    for result in target_results:
        latest[result.target_id] = result.outcome

    success = sum(1 for outcome in latest.values() if outcome == TargetOutcome.SUCCESS)
    failed = sum(1 for outcome in latest.values() if outcome == TargetOutcome.FAILED)
    skipped = sum(1 for outcome in latest.values() if outcome == TargetOutcome.SKIPPED)
    done = success + failed + skipped

    if done > total:
        msg = f"{done} recorded outcomes exceed batch total {total}"
        raise ValueError(msg)

    if done < total:
        status = BatchStatus.RUNNING if started else BatchStatus.PENDING
    elif cancelled:
        status = BatchStatus.CANCELLED
    elif fail_on_target_failure and failed > 0:
        status = BatchStatus.FAILED
    else:
        status = BatchStatus.COMPLETED

    return BatchProgress(
        status=status,
        success_count=success,
        failed_count=failed,
        skipped_count=skipped,
        progress=compute_progress(done, total),
    )
