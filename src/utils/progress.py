"""Live dispatch statistics for a batch's worker pool."""

from __future__ import annotations

import threading
import time
from collections import Counter
from dataclasses import dataclass, field

from src.models.batch_record import TargetOutcome, TargetResult
from src.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class DispatchProgress:
    """Occupancy and outcome counts for one batch's worker pool.

    Workers call ``target_started``/``target_released`` around each external
    job; the dispatch loop calls ``record`` as results come back. The log
    lines show whether the pool is saturated and how fast targets finish.
    The batch record remains the source of truth for counters.
    """

    batch_id: str
    eligible: int
    concurrency: int
    outcomes: Counter[TargetOutcome] = field(default_factory=Counter)
    failures: list[tuple[int, str]] = field(default_factory=list)
    in_flight: int = 0
    peak_in_flight: int = 0
    start_time: float = field(default_factory=time.monotonic)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def target_started(self) -> None:
        with self._lock:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)

    def target_released(self) -> None:
        with self._lock:
            self.in_flight -= 1

    def record(self, result: TargetResult) -> None:
        with self._lock:
            self.outcomes[result.outcome] += 1
            if result.outcome == TargetOutcome.FAILED:
                self.failures.append((result.target_id, result.error or ""))

    @property
    def done(self) -> int:
        return sum(self.outcomes.values())

    @property
    def targets_per_minute(self) -> float:
        elapsed = time.monotonic() - self.start_time
        if elapsed <= 0:
            return 0.0
        return self.done / elapsed * 60.0

    def log_progress(self, every_n: int = 10) -> None:
        """Log a ``batch_progress`` line every N results and after the last."""
        done = self.done
        if done == 0 or (done % every_n and done != self.eligible):
            return
        logger.info(
            "batch_progress",
            batch_id=self.batch_id,
            done=done,
            eligible=self.eligible,
            in_flight=self.in_flight,
            concurrency=self.concurrency,
            success=self.outcomes[TargetOutcome.SUCCESS],
            failed=self.outcomes[TargetOutcome.FAILED],
            skipped=self.outcomes[TargetOutcome.SKIPPED],
            rate_per_minute=round(self.targets_per_minute, 1),
        )

    def summary(self) -> dict[str, int | float]:
        return {
            "done": self.done,
            "failed": self.outcomes[TargetOutcome.FAILED],
            "peak_in_flight": self.peak_in_flight,
            "duration_seconds": round(time.monotonic() - self.start_time, 2),
        }
