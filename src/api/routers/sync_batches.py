"""Batch sync endpoints: sync every document under a root node to MySQL."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request, status

from src.api.dependencies import batch_service
from src.api.schemas import (
    ExecuteResponse,
    PreviewResponse,
    SyncExecuteRequest,
    SyncPreviewRequest,
    batch_view,
    page_view,
)
from src.models.batch_record import BatchKind

router = APIRouter()


@router.post("/nodes/{node_id}/sync/batch/preview", response_model=PreviewResponse)
def preview_sync_batch(request: Request, node_id: int, payload: SyncPreviewRequest) -> PreviewResponse:
    service = batch_service(request, BatchKind.SYNC)
    summary = service.preview(node_id, payload.include_descendants, payload.policy())
    return PreviewResponse.from_summary(summary)


@router.post(
    "/nodes/{node_id}/sync/batch/execute",
    response_model=ExecuteResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def execute_sync_batch(request: Request, node_id: int, payload: SyncExecuteRequest) -> ExecuteResponse:
    service = batch_service(request, BatchKind.SYNC)
    record = service.execute(
        node_id,
        payload.include_descendants,
        payload.policy(),
        concurrency=payload.concurrency,
    )
    return ExecuteResponse(
        batch_id=record.batch_id,
        status=record.status.value,
        total=record.total,
        message=record.error_message or "batch sync submitted",
    )


@router.get("/sync/batches")
def list_sync_batches(
    request: Request,
    limit: int = Query(20),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    service = batch_service(request, BatchKind.SYNC)
    page = service.list_batches(limit=limit, offset=offset)
    return page_view(page, service.record_is_stale)


@router.get("/sync/batches/{batch_id}")
def get_sync_batch(request: Request, batch_id: str) -> dict[str, Any]:
    service = batch_service(request, BatchKind.SYNC)
    record = service.get_batch(batch_id)
    return batch_view(record, stale=service.record_is_stale(record))


@router.post("/sync/batches/{batch_id}/cancel")
def cancel_sync_batch(request: Request, batch_id: str) -> dict[str, Any]:
    service = batch_service(request, BatchKind.SYNC)
    record = service.cancel_batch(batch_id)
    return batch_view(record, stale=service.record_is_stale(record))
