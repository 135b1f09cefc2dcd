"""Batch service: the per-kind facade used by the HTTP API and the CLI."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from src.domains.batch.core.staleness import is_stale

if TYPE_CHECKING:
    from src.domains.batch.repositories.batch_repository import BatchRepository
    from src.domains.batch.services.batch_executor import BatchExecutor
    from src.domains.batch.services.preview_service import PreviewService
    from src.models.batch_record import BatchKind, BatchRecord
    from src.models.skip_policy import SkipPolicy
    from src.models.target import PreviewSummary

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100


@dataclass(frozen=True)
class BatchPage:
    """One page of batch records."""

    items: list[BatchRecord]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


def clamp_limit(limit: int | None) -> int:
    """Default a missing or non-positive limit to 20 and cap it at 100."""
    if limit is None or limit <= 0:
        return DEFAULT_LIST_LIMIT
    return min(limit, MAX_LIST_LIMIT)


class BatchService:
    """Preview, execute, inspect and cancel batches of one kind."""

    def __init__(
        self,
        kind: BatchKind,
        preview_service: PreviewService,
        executor: BatchExecutor,
        repository: BatchRepository,
        stale_after: timedelta = timedelta(minutes=30),
    ) -> None:
        self.kind = kind
        self.preview_service = preview_service
        self.executor = executor
        self.repository = repository
        self.stale_after = stale_after

    def preview(
        self,
        root_target_id: int,
        include_descendants: bool,
        policy: SkipPolicy,
        workflow_key: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> PreviewSummary:
        return self.preview_service.preview(
            root_target_id, include_descendants, policy, workflow_key, parameters
        )

    def execute(
        self,
        root_target_id: int,
        include_descendants: bool,
        policy: SkipPolicy,
        concurrency: int | None = None,
        workflow_key: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> BatchRecord:
        """Submit a batch and return its record as first persisted."""
        batch_id = self.executor.execute(
            root_target_id,
            include_descendants,
            policy,
            concurrency=concurrency,
            workflow_key=workflow_key,
            parameters=parameters,
        )
        return self.executor.get(batch_id)

    def get_batch(self, batch_id: str) -> BatchRecord:
        """Raises BatchNotFoundError for unknown ids and ids of the other kind."""
        return self.executor.get(batch_id)

    def list_batches(
        self,
        limit: int | None = DEFAULT_LIST_LIMIT,
        offset: int = 0,
        workflow_key: str | None = None,
    ) -> BatchPage:
        limit = clamp_limit(limit)
        offset = max(offset, 0)
        items, total = self.repository.list(
            kind=self.kind, workflow_key=workflow_key, limit=limit, offset=offset
        )
        return BatchPage(items=items, total=total, limit=limit, offset=offset)

    def cancel_batch(self, batch_id: str) -> BatchRecord:
        return self.executor.cancel(batch_id)

    def list_stale(self) -> list[BatchRecord]:
        """Active batches that have been stuck longer than the staleness threshold."""
        return [
            record
            for record in self.repository.list_active(kind=self.kind)
            if is_stale(record, self.stale_after)
        ]

    def record_is_stale(self, record: BatchRecord) -> bool:
        return is_stale(record, self.stale_after)
