"""Contract tests for the batch repository against a real SQLite database."""

from __future__ import annotations

import sqlite3
import threading
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from src.domains.batch.core.errors import BatchNotFoundError, BatchStateError
from src.models.batch_record import (
    BatchDetails,
    BatchKind,
    BatchRecord,
    BatchStatus,
    OutstandingTarget,
    TargetOutcome,
    TargetResult,
)
from src.models.skip_policy import SkipPolicy

if TYPE_CHECKING:
    from src.domains.batch.repositories.batch_repository import BatchRepository
    from src.services.database import Database


def _record(
    kind: BatchKind = BatchKind.SYNC,
    total: int = 2,
    created_at: datetime | None = None,
    workflow_key: str | None = None,
) -> BatchRecord:
    return BatchRecord(
        kind=kind,
        workflow_key=workflow_key,
        root_target_id=1,
        concurrency=2,
        policy=SkipPolicy(skip_name_contains=["draft"], require_sync_target=True),
        parameters={"lang": "en"},
        total=total,
        details=BatchDetails(
            outstanding=[
                OutstandingTarget(target_id=i, display_name=f"t{i}", display_path=f"/t{i}")
                for i in range(total)
            ]
        ),
        created_at=created_at or datetime.now(UTC),
    )


def _success(target_id: int) -> TargetResult:
    return TargetResult(
        target_id=target_id,
        display_name=f"t{target_id}",
        display_path=f"/t{target_id}",
        outcome=TargetOutcome.SUCCESS,
    )


class TestDatabase:
    """Tests for the schema."""

    def test_init_db_is_idempotent(self, db: Database) -> None:
        db.init_db()
        row = db.fetchone("SELECT name FROM sqlite_master WHERE type='table' AND name='batches'")
        assert row is not None

    def test_kind_constraint(self, db: Database) -> None:
        with pytest.raises(sqlite3.IntegrityError):
            db.execute(
                "INSERT INTO batches (batch_id, kind, root_target_id, status, created_at) "
                "VALUES ('b', 'other', 1, 'pending', '2026-01-01')"
            )


class TestBatchRepository:
    """Tests for BatchRepository."""

    def test_create_and_get_round_trip(self, repository: BatchRepository) -> None:
        record = _record()
        repository.create(record)
        loaded = repository.get(record.batch_id)
        assert loaded.policy == record.policy
        assert loaded.parameters == {"lang": "en"}
        assert loaded.created_at == record.created_at
        assert [t.target_id for t in loaded.details.outstanding] == [0, 1]

    def test_get_unknown(self, repository: BatchRepository) -> None:
        with pytest.raises(BatchNotFoundError, match="batch nope not found"):
            repository.get("nope")

    def test_update_applies_mutation(self, repository: BatchRepository) -> None:
        record = _record()
        repository.create(record)

        def complete_one(draft: BatchRecord) -> None:
            draft.status = BatchStatus.RUNNING
            draft.details.target_results.append(_success(0))
            draft.success_count = 1

        updated = repository.update(record.batch_id, complete_one)
        assert updated.progress == 50.0
        assert repository.get(record.batch_id).success_count == 1

    def test_invalid_mutation_not_persisted(self, repository: BatchRepository) -> None:
        record = _record()
        repository.create(record)

        def overflow(draft: BatchRecord) -> None:
            draft.success_count = 5

        with pytest.raises(ValueError):
            repository.update(record.batch_id, overflow)
        assert repository.get(record.batch_id).success_count == 0

    def test_counts_never_decrease(self, repository: BatchRepository) -> None:
        record = _record()
        repository.create(record)
        repository.update(record.batch_id, lambda draft: setattr(draft, "success_count", 1))

        with pytest.raises(BatchStateError, match="must not decrease"):
            repository.update(record.batch_id, lambda draft: setattr(draft, "success_count", 0))

    def test_terminal_record_is_immutable(self, repository: BatchRepository) -> None:
        record = _record(total=0)
        repository.create(record)

        def finish(draft: BatchRecord) -> None:
            draft.status = BatchStatus.COMPLETED

        repository.update(record.batch_id, finish)
        with pytest.raises(BatchStateError, match="already completed"):
            repository.update(record.batch_id, lambda draft: None)

    def test_concurrent_updates_do_not_lose_counts(self, repository: BatchRepository) -> None:
        record = _record(total=40)
        repository.create(record)

        def bump(draft: BatchRecord) -> None:
            draft.success_count += 1

        threads = [
            threading.Thread(target=repository.update, args=(record.batch_id, bump))
            for _ in range(40)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert repository.get(record.batch_id).success_count == 40

    def test_list_newest_first_with_filters(self, repository: BatchRepository) -> None:
        base = datetime(2026, 1, 1, tzinfo=UTC)
        older = _record(BatchKind.WORKFLOW, created_at=base, workflow_key="summarize")
        newer = _record(BatchKind.WORKFLOW, created_at=base + timedelta(hours=1), workflow_key="translate")
        sync = _record(BatchKind.SYNC, created_at=base + timedelta(hours=2))
        for record in (older, newer, sync):
            repository.create(record)

        items, total = repository.list(kind=BatchKind.WORKFLOW)
        assert total == 2
        assert [r.batch_id for r in items] == [newer.batch_id, older.batch_id]

        items, total = repository.list(kind=BatchKind.WORKFLOW, workflow_key="summarize")
        assert (total, [r.batch_id for r in items]) == (1, [older.batch_id])

        items, total = repository.list(limit=1, offset=1)
        assert total == 3
        assert [r.batch_id for r in items] == [newer.batch_id]

    def test_list_active(self, repository: BatchRepository) -> None:
        active = _record()
        finished = _record(total=0)
        repository.create(active)
        repository.create(finished)
        repository.update(finished.batch_id, lambda draft: setattr(draft, "status", BatchStatus.COMPLETED))

        assert [r.batch_id for r in repository.list_active()] == [active.batch_id]
        assert repository.list_active(kind=BatchKind.WORKFLOW) == []
