"""Batch executor: creates batch records and drives targets through a bounded pool."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from src.domains.batch.core.eligibility import partition
from src.domains.batch.core.errors import (
    BatchNotFoundError,
    BatchStateError,
    BatchValidationError,
    EnumerationError,
    TriggerError,
)
from src.domains.batch.core.status_aggregation import aggregate
from src.models.batch_record import (
    BatchDetails,
    BatchKind,
    BatchRecord,
    BatchStatus,
    OutstandingTarget,
    TargetOutcome,
    TargetResult,
)
from src.services.protocols import JobState
from src.utils.progress import DispatchProgress

if TYPE_CHECKING:
    from collections.abc import Callable

    from src.domains.batch.repositories.batch_repository import BatchRepository
    from src.models.skip_policy import SkipPolicy
    from src.models.target import Target
    from src.services.protocols import JobHandle, TargetEnumeratorProtocol, TriggerProtocol

logger = structlog.get_logger(__name__)

DEFAULT_CONCURRENCY = 3
MAX_CONCURRENCY = 20

SKIP_REASON_CANCELLED = "batch cancelled"
ERROR_CANCELLED_WHILE_RUNNING = "batch cancelled while running"


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class _ActiveBatch:
    """In-process handle on a batch whose dispatch loop is live."""

    cancel_event: threading.Event = field(default_factory=threading.Event)
    driver: threading.Thread | None = None


class BatchExecutor:
    """Runs batches of one kind in the background.

    ``execute`` enumerates and filters on the calling thread, persists a
    pending record and returns its id. A background driver then fans the
    eligible targets out to a pool of ``concurrency`` workers, each of which
    triggers external work for one target and optionally polls it to a
    terminal state. Every outcome goes through the repository's per-batch
    update so counters never race.
    """

    def __init__(
        self,
        kind: BatchKind,
        enumerator: TargetEnumeratorProtocol,
        trigger: TriggerProtocol,
        repository: BatchRepository,
        *,
        default_concurrency: int = DEFAULT_CONCURRENCY,
        max_concurrency: int = MAX_CONCURRENCY,
        poll_interval: float = 5.0,
        await_completion: bool = True,
        fail_on_target_failure: bool = False,
    ) -> None:
        self.kind = kind
        self.enumerator = enumerator
        self.trigger = trigger
        self.repository = repository
        self.default_concurrency = default_concurrency
        self.max_concurrency = max_concurrency
        self.poll_interval = poll_interval
        self.await_completion = await_completion
        self.fail_on_target_failure = fail_on_target_failure
        self._active: dict[str, _ActiveBatch] = {}
        self._active_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def resolve_concurrency(self, concurrency: int | None) -> int:
        """Apply the default and the hard cap. Values below 1 are rejected."""
        if concurrency is None:
            return min(self.default_concurrency, self.max_concurrency)
        if concurrency < 1:
            msg = f"concurrency must be at least 1, got {concurrency}"
            raise BatchValidationError(msg)
        if concurrency > self.max_concurrency:
            logger.info(
                "concurrency_clamped",
                requested=concurrency,
                max_concurrency=self.max_concurrency,
            )
            return self.max_concurrency
        return concurrency

    def execute(
        self,
        root_target_id: int,
        include_descendants: bool,
        policy: SkipPolicy,
        concurrency: int | None = None,
        workflow_key: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> str:
        """Create a batch and start it in the background; return its id.

        Raises BatchValidationError before anything is persisted. An
        enumeration failure is not raised: it yields a batch that is
        already failed, so the failure stays queryable by id.
        """
        if self.kind == BatchKind.WORKFLOW and not (workflow_key and workflow_key.strip()):
            msg = "workflow_key is required for workflow batches"
            raise BatchValidationError(msg)
        if self.kind == BatchKind.SYNC:
            workflow_key = None
        resolved_concurrency = self.resolve_concurrency(concurrency)
        parameters = dict(parameters or {})
        self.trigger.validate(workflow_key, parameters)

        base: dict[str, Any] = {
            "kind": self.kind,
            "workflow_key": workflow_key,
            "root_target_id": root_target_id,
            "include_descendants": include_descendants,
            "concurrency": resolved_concurrency,
            "policy": policy,
            "parameters": parameters,
        }

        try:
            targets = self.enumerator.enumerate(root_target_id, include_descendants)
            if not targets:
                msg = f"no targets found under root {root_target_id}"
                raise EnumerationError(msg)
        except EnumerationError as e:
            record = BatchRecord(
                **base,
                status=BatchStatus.FAILED,
                error_message=str(e),
                finished_at=_utc_now(),
            )
            self.repository.create(record)
            logger.warning(
                "batch_enumeration_failed",
                batch_id=record.batch_id,
                root_target_id=root_target_id,
                error=str(e),
            )
            return record.batch_id

        eligible, skipped = partition(targets, policy)
        now = _utc_now()
        skipped_results = [
            TargetResult(
                target_id=target.target_id,
                display_name=target.display_name,
                display_path=target.display_path,
                outcome=TargetOutcome.SKIPPED,
                skip_reason=reason,
                finished_at=now,
            )
            for target, reason in skipped
        ]
        progress = aggregate(skipped_results, len(targets), started=False)
        record = BatchRecord(
            **base,
            status=BatchStatus.PENDING,
            total=len(targets),
            success_count=progress.success_count,
            failed_count=progress.failed_count,
            skipped_count=progress.skipped_count,
            details=BatchDetails(
                target_results=skipped_results,
                outstanding=[
                    OutstandingTarget(
                        target_id=target.target_id,
                        display_name=target.display_name,
                        display_path=target.display_path,
                    )
                    for target in eligible
                ],
            ),
        )
        self.repository.create(record)

        active = _ActiveBatch()
        with self._active_lock:
            self._active[record.batch_id] = active
        # One driver thread per batch; batches never queue behind each other.
        active.driver = threading.Thread(
            target=self._run,
            args=(record.batch_id, eligible, active),
            name=f"{self.kind.value}-{record.batch_id}",
            daemon=True,
        )
        active.driver.start()

        logger.info(
            "batch_submitted",
            batch_id=record.batch_id,
            kind=self.kind.value,
            workflow_key=workflow_key,
            total=record.total,
            eligible=len(eligible),
            skipped=len(skipped),
            concurrency=resolved_concurrency,
        )
        return record.batch_id

    # ------------------------------------------------------------------
    # Background dispatch
    # ------------------------------------------------------------------

    def _safe_update(
        self, batch_id: str, mutator: Callable[[BatchRecord], None], active: _ActiveBatch
    ) -> BatchRecord | None:
        """Update a live batch; if it was closed elsewhere, stop dispatching."""
        try:
            return self.repository.update(batch_id, mutator)
        except BatchStateError as e:
            logger.warning("batch_closed_externally", batch_id=batch_id, error=str(e))
            active.cancel_event.set()
            return None

    def _apply_counts(self, record: BatchRecord, *, final: bool, cancelled: bool = False) -> None:
        progress = aggregate(
            record.details.target_results,
            record.total,
            started=record.started_at is not None,
            cancelled=cancelled,
            fail_on_target_failure=self.fail_on_target_failure,
        )
        record.success_count = progress.success_count
        record.failed_count = progress.failed_count
        record.skipped_count = progress.skipped_count
        if final:
            record.status = progress.status
            record.finished_at = _utc_now()
        elif not progress.status.is_terminal:
            record.status = progress.status

    def _run(self, batch_id: str, eligible: list[Target], active: _ActiveBatch) -> None:
        log = logger.bind(batch_id=batch_id)
        try:
            record = self._safe_update(batch_id, self._mark_running, active)
            if record is None:
                return
            log.info("batch_started", eligible=len(eligible), concurrency=record.concurrency)

            context = {
                "batch_id": batch_id,
                "workflow_key": record.workflow_key,
                "parameters": record.parameters,
            }
            dispatch = DispatchProgress(
                batch_id=batch_id, eligible=len(eligible), concurrency=record.concurrency
            )
            with ThreadPoolExecutor(
                max_workers=record.concurrency, thread_name_prefix=f"{batch_id[:14]}-worker"
            ) as pool:
                futures = {
                    pool.submit(
                        self._run_target, batch_id, context, target, active, dispatch
                    ): target
                    for target in eligible
                }
                for future in as_completed(futures):
                    result = future.result()
                    self._safe_update(batch_id, self._result_recorder(result), active)
                    dispatch.record(result)
                    dispatch.log_progress()

            final = self._safe_update(batch_id, self._finalizer(active), active)
            if final is not None:
                log.info(
                    "batch_finished",
                    status=final.status.value,
                    success=final.success_count,
                    failed=final.failed_count,
                    skipped=final.skipped_count,
                    peak_in_flight=dispatch.peak_in_flight,
                    duration_seconds=dispatch.summary()["duration_seconds"],
                )
        except Exception as e:
            log.exception("batch_runner_crashed", error=str(e))
            self._safe_update(batch_id, self._crash_finalizer(str(e)), active)
        finally:
            with self._active_lock:
                self._active.pop(batch_id, None)

    def _mark_running(self, record: BatchRecord) -> None:
        record.started_at = _utc_now()
        record.status = BatchStatus.RUNNING
        self._apply_counts(record, final=False)

    def _mark_dispatched(self, target_id: int, job_id: str | None) -> Callable[[BatchRecord], None]:
        dispatched_at = _utc_now()

        def mutate(record: BatchRecord) -> None:
            for outstanding in record.details.outstanding:
                if outstanding.target_id == target_id:
                    outstanding.dispatched_at = outstanding.dispatched_at or dispatched_at
                    outstanding.job_id = job_id or outstanding.job_id

        return mutate

    def _result_recorder(self, result: TargetResult) -> Callable[[BatchRecord], None]:
        def mutate(record: BatchRecord) -> None:
            record.details.outstanding = [
                item for item in record.details.outstanding if item.target_id != result.target_id
            ]
            record.details.target_results.append(result)
            self._apply_counts(record, final=False)

        return mutate

    def _finalizer(self, active: _ActiveBatch) -> Callable[[BatchRecord], None]:
        def mutate(record: BatchRecord) -> None:
            cancelled = active.cancel_event.is_set() or record.cancel_requested
            _close_outstanding(record)
            self._apply_counts(record, final=True, cancelled=cancelled)

        return mutate

    def _crash_finalizer(self, error: str) -> Callable[[BatchRecord], None]:
        def mutate(record: BatchRecord) -> None:
            now = _utc_now()
            for item in record.details.outstanding:
                record.details.target_results.append(
                    TargetResult(
                        target_id=item.target_id,
                        display_name=item.display_name,
                        display_path=item.display_path,
                        outcome=TargetOutcome.FAILED,
                        error=f"batch runner error: {error}",
                        job_id=item.job_id,
                        started_at=item.dispatched_at,
                        finished_at=now,
                    )
                )
            record.details.outstanding = []
            self._apply_counts(record, final=True)

        return mutate

    def _run_target(
        self,
        batch_id: str,
        context: dict[str, Any],
        target: Target,
        active: _ActiveBatch,
        dispatch: DispatchProgress,
    ) -> TargetResult:
        """Trigger one target and wait for it. Never raises."""
        if active.cancel_event.is_set():
            return _skipped(target, SKIP_REASON_CANCELLED)

        dispatch.target_started()
        try:
            return self._dispatch_target(batch_id, context, target, active)
        finally:
            dispatch.target_released()

    def _dispatch_target(
        self, batch_id: str, context: dict[str, Any], target: Target, active: _ActiveBatch
    ) -> TargetResult:
        started_at = _utc_now()
        self._safe_update(batch_id, self._mark_dispatched(target.target_id, None), active)
        try:
            handle = self.trigger.trigger(target, context)
        except TriggerError as e:
            logger.warning(
                "target_trigger_failed", batch_id=batch_id, target_id=target.target_id, error=str(e)
            )
            return _failed(target, str(e), started_at)
        except Exception as e:
            logger.exception(
                "target_trigger_crashed", batch_id=batch_id, target_id=target.target_id
            )
            return _failed(target, f"{type(e).__name__}: {e}", started_at)

        self._safe_update(batch_id, self._mark_dispatched(target.target_id, handle.job_id), active)
        logger.info(
            "target_triggered", batch_id=batch_id, target_id=target.target_id, job_id=handle.job_id
        )
        if not self.await_completion:
            return _succeeded(target, handle, started_at)
        return self._await_job(batch_id, target, handle, started_at, active)

    def _await_job(
        self,
        batch_id: str,
        target: Target,
        handle: JobHandle,
        started_at: datetime,
        active: _ActiveBatch,
    ) -> TargetResult:
        while True:
            try:
                status = self.trigger.poll(handle)
            except Exception as e:
                logger.warning(
                    "target_poll_failed",
                    batch_id=batch_id,
                    target_id=target.target_id,
                    job_id=handle.job_id,
                    error=str(e),
                )
                return _failed(target, str(e), started_at, handle)

            if status.is_terminal:
                if status.state == JobState.SUCCEEDED:
                    return _succeeded(target, handle, started_at)
                return _failed(target, status.message or "job failed", started_at, handle)

            if active.cancel_event.wait(self.poll_interval):
                try:
                    self.trigger.cancel(handle)
                except Exception as e:
                    logger.warning(
                        "target_cancel_failed",
                        batch_id=batch_id,
                        job_id=handle.job_id,
                        error=str(e),
                    )
                return _failed(target, ERROR_CANCELLED_WHILE_RUNNING, started_at, handle)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def get(self, batch_id: str) -> BatchRecord:
        """Return a batch of this executor's kind. Raises BatchNotFoundError."""
        record = self.repository.get(batch_id)
        if record.kind != self.kind:
            raise BatchNotFoundError(batch_id)
        return record

    def is_active(self, batch_id: str) -> bool:
        with self._active_lock:
            return batch_id in self._active

    def cancel(self, batch_id: str) -> BatchRecord:
        """Request cooperative cancellation of a batch.

        A batch driven by this process stops dispatching and finishes as
        cancelled once in-flight targets return. A batch with no live driver
        (left over from a previous process) is closed immediately.
        """
        record = self.get(batch_id)
        if record.status.is_terminal:
            msg = f"batch {batch_id} is already {record.status.value}"
            raise BatchStateError(msg)

        with self._active_lock:
            active = self._active.get(batch_id)

        def request(record: BatchRecord) -> None:
            record.cancel_requested = True

        try:
            if active is not None:
                self.repository.update(batch_id, request)
                active.cancel_event.set()
                logger.info("batch_cancel_requested", batch_id=batch_id)
            else:
                self.repository.update(batch_id, self._orphan_canceller)
                logger.info("orphaned_batch_cancelled", batch_id=batch_id)
        except BatchStateError:
            # Finished while the request was in flight.
            pass
        return self.repository.get(batch_id)

    def _orphan_canceller(self, record: BatchRecord) -> None:
        record.cancel_requested = True
        _close_outstanding(record)
        self._apply_counts(record, final=True, cancelled=True)

    def wait(self, batch_id: str, timeout: float | None = None) -> bool:
        """Block until a batch's driver finishes. Returns False on timeout."""
        with self._active_lock:
            active = self._active.get(batch_id)
        if active is None or active.driver is None:
            return True
        active.driver.join(timeout)
        return not active.driver.is_alive()

    def shutdown(self, *, cancel_running: bool = True, wait: bool = True) -> None:
        """Stop live batch drivers, cancelling their batches if asked."""
        with self._active_lock:
            live = list(self._active.values())
        if cancel_running:
            for active in live:
                active.cancel_event.set()
        if wait:
            for active in live:
                if active.driver is not None:
                    active.driver.join()


def _close_outstanding(record: BatchRecord) -> None:
    """Record every target without an outcome as skipped by cancellation."""
    now = _utc_now()
    for item in record.details.outstanding:
        record.details.target_results.append(
            TargetResult(
                target_id=item.target_id,
                display_name=item.display_name,
                display_path=item.display_path,
                outcome=TargetOutcome.SKIPPED,
                skip_reason=SKIP_REASON_CANCELLED,
                job_id=item.job_id,
                started_at=item.dispatched_at,
                finished_at=now,
            )
        )
    record.details.outstanding = []


def _skipped(target: Target, reason: str) -> TargetResult:
    return TargetResult(
        target_id=target.target_id,
        display_name=target.display_name,
        display_path=target.display_path,
        outcome=TargetOutcome.SKIPPED,
        skip_reason=reason,
        finished_at=_utc_now(),
    )


def _failed(
    target: Target, error: str, started_at: datetime, handle: JobHandle | None = None
) -> TargetResult:
    return TargetResult(
        target_id=target.target_id,
        display_name=target.display_name,
        display_path=target.display_path,
        outcome=TargetOutcome.FAILED,
        error=error or "unknown error",
        job_id=handle.job_id if handle else None,
        started_at=started_at,
        finished_at=_utc_now(),
    )


def _succeeded(target: Target, handle: JobHandle, started_at: datetime) -> TargetResult:
    return TargetResult(
        target_id=target.target_id,
        display_name=target.display_name,
        display_path=target.display_path,
        outcome=TargetOutcome.SUCCESS,
        job_id=handle.job_id,
        started_at=started_at,
        finished_at=_utc_now(),
    )
