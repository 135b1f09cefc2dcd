"""Batch repository: the registry of batch records."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from src.domains.batch.core.errors import BatchNotFoundError, BatchStateError
from src.models.batch_record import BatchKind, BatchRecord, BatchStatus

if TYPE_CHECKING:
    from src.services.database import Database

logger = structlog.get_logger(__name__)

BatchMutator = Callable[[BatchRecord], None]

_ACTIVE_STATUSES = (BatchStatus.PENDING.value, BatchStatus.RUNNING.value)


class BatchRepository:
    """Single owner of batch records.

    Writes to one batch are serialized by a per-batch lock so concurrent
    worker completions never race on the counters. Reads take no batch
    lock and return a snapshot.
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, batch_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(batch_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[batch_id] = lock
            return lock

    def _release_lock(self, batch_id: str) -> None:
        with self._locks_guard:
            self._locks.pop(batch_id, None)

    def create(self, record: BatchRecord) -> None:
        """Persist a new batch record."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """INSERT INTO batches
                   (batch_id, kind, workflow_key, root_target_id, include_descendants,
                    concurrency, policy, parameters, status, total, success_count,
                    failed_count, skipped_count, cancel_requested, error_message,
                    details, created_at, started_at, finished_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.batch_id,
                    record.kind.value,
                    record.workflow_key,
                    record.root_target_id,
                    int(record.include_descendants),
                    record.concurrency,
                    record.policy.model_dump_json(),
                    json.dumps(record.parameters),
                    *self._mutable_columns(record),
                ),
            )
        logger.info(
            "batch_created",
            batch_id=record.batch_id,
            kind=record.kind.value,
            status=record.status.value,
            total=record.total,
        )

    def get(self, batch_id: str) -> BatchRecord:
        """Return a snapshot of a batch. Raises BatchNotFoundError."""
        row = self.db.fetchone("SELECT * FROM batches WHERE batch_id = ?", (batch_id,))
        if row is None:
            raise BatchNotFoundError(batch_id)
        return self._deserialize_row(row)

    def update(self, batch_id: str, mutator: BatchMutator) -> BatchRecord:
        """Atomically read, mutate and write back one batch.

        The mutator receives a private copy and edits it in place. Terminal
        records are immutable: updating one raises BatchStateError.
        """
        with self._lock_for(batch_id):
            current = self.get(batch_id)
            if current.status.is_terminal:
                msg = f"batch {batch_id} is already {current.status.value}"
                raise BatchStateError(msg)

            draft = current.model_copy(deep=True)
            mutator(draft)
            updated = BatchRecord.model_validate(draft.model_dump(exclude={"progress"}))
            if updated.done_count < current.done_count:
                msg = f"batch {batch_id} outcome counts must not decrease"
                raise BatchStateError(msg)

            with self.db.transaction() as cursor:
                cursor.execute(
                    """UPDATE batches
                       SET status = ?, total = ?, success_count = ?, failed_count = ?,
                           skipped_count = ?, cancel_requested = ?, error_message = ?,
                           details = ?, created_at = ?, started_at = ?, finished_at = ?
                       WHERE batch_id = ?""",
                    (*self._mutable_columns(updated), batch_id),
                )

        if updated.status.is_terminal:
            self._release_lock(batch_id)
        return updated

    def list(
        self,
        kind: BatchKind | None = None,
        workflow_key: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[BatchRecord], int]:
        """Return (page, total matching) ordered newest first."""
        clauses: list[str] = []
        params: list[Any] = []
        if kind is not None:
            clauses.append("kind = ?")
            params.append(kind.value)
        if workflow_key:
            clauses.append("workflow_key = ?")
            params.append(workflow_key)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        count_row = self.db.fetchone(f"SELECT COUNT(*) AS n FROM batches {where}", tuple(params))
        total = int(count_row["n"]) if count_row else 0

        rows = self.db.fetchall(
            f"""SELECT * FROM batches {where}
                ORDER BY created_at DESC, rowid DESC
                LIMIT ? OFFSET ?""",
            (*params, limit, offset),
        )
        return [self._deserialize_row(row) for row in rows], total

    def list_active(self, kind: BatchKind | None = None) -> list[BatchRecord]:
        """Return all pending or running batches, oldest first."""
        sql = "SELECT * FROM batches WHERE status IN (?, ?)"
        params: list[Any] = list(_ACTIVE_STATUSES)
        if kind is not None:
            sql += " AND kind = ?"
            params.append(kind.value)
        rows = self.db.fetchall(f"{sql} ORDER BY created_at ASC", tuple(params))
        return [self._deserialize_row(row) for row in rows]

    @staticmethod
    def _mutable_columns(record: BatchRecord) -> tuple[Any, ...]:
        return (
            record.status.value,
            record.total,
            record.success_count,
            record.failed_count,
            record.skipped_count,
            int(record.cancel_requested),
            record.error_message,
            record.details.model_dump_json(),
            record.created_at.isoformat(),
            _isoformat(record.started_at),
            _isoformat(record.finished_at),
        )

    def _deserialize_row(self, row: Any) -> BatchRecord:
        """Deserialize JSON and boolean columns into a BatchRecord."""
        data = dict(row)
        for column, default in (("policy", {}), ("parameters", {}), ("details", {})):
            try:
                data[column] = json.loads(data[column]) if data.get(column) else default
            except (json.JSONDecodeError, TypeError):
                logger.warning("batch_column_unreadable", batch_id=data.get("batch_id"), column=column)
                data[column] = default
        data["include_descendants"] = bool(data["include_descendants"])
        data["cancel_requested"] = bool(data["cancel_requested"])
        return BatchRecord.model_validate(data)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
