"""Request and response bodies of the batch HTTP API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from src.models.skip_policy import SkipPolicy
from src.models.target import TargetPreviewItem

if TYPE_CHECKING:
    from collections.abc import Callable

    from src.domains.batch.services.batch_service import BatchPage
    from src.models.batch_record import BatchRecord
    from src.models.target import PreviewSummary


class _SkipRules(BaseModel):
    include_descendants: bool = True
    skip_no_source: bool = False
    skip_no_output: bool = False
    skip_name_contains: list[str] | str | None = None
    skip_doc_types: list[str] | str | None = None

    def policy(self) -> SkipPolicy:
        return SkipPolicy(
            skip_no_source=self.skip_no_source,
            skip_no_output=self.skip_no_output,
            skip_name_contains=self.skip_name_contains,
            skip_doc_types=self.skip_doc_types,
        )


class WorkflowPreviewRequest(_SkipRules):
    workflow_key: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class WorkflowExecuteRequest(WorkflowPreviewRequest):
    concurrency: int | None = None


class SyncPreviewRequest(_SkipRules):
    require_sync_target: bool = True

    def policy(self) -> SkipPolicy:
        policy = super().policy()
        policy.require_sync_target = self.require_sync_target
        return policy


class SyncExecuteRequest(SyncPreviewRequest):
    concurrency: int | None = None


class PreviewResponse(BaseModel):
    root_node_id: int
    workflow_key: str | None = None
    include_descendants: bool
    total: int
    can_execute: int
    will_skip: int
    items: list[TargetPreviewItem]

    @classmethod
    def from_summary(cls, summary: PreviewSummary) -> PreviewResponse:
        return cls(
            root_node_id=summary.root_target_id,
            workflow_key=summary.workflow_key,
            include_descendants=summary.include_descendants,
            total=summary.total,
            can_execute=summary.can_execute_count,
            will_skip=summary.will_skip_count,
            items=summary.items,
        )


class ExecuteResponse(BaseModel):
    batch_id: str
    status: str
    total: int
    message: str


def batch_view(record: BatchRecord, *, stale: bool, include_details: bool = True) -> dict[str, Any]:
    """JSON view of a batch record, with the derived staleness flag."""
    exclude = None if include_details else {"details"}
    view: dict[str, Any] = record.model_dump(mode="json", exclude=exclude)
    view["is_stale"] = stale
    return view


def page_view(page: BatchPage, stale_check: Callable[[BatchRecord], bool]) -> dict[str, Any]:
    return {
        "items": [
            batch_view(record, stale=stale_check(record), include_details=False)
            for record in page.items
        ],
        "total": page.total,
        "limit": page.limit,
        "offset": page.offset,
        "has_more": page.has_more,
    }
