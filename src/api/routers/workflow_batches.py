"""Batch workflow endpoints: run one workflow per node under a root node."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request, status

from src.api.dependencies import batch_service
from src.api.schemas import (
    ExecuteResponse,
    PreviewResponse,
    WorkflowExecuteRequest,
    WorkflowPreviewRequest,
    batch_view,
    page_view,
)
from src.models.batch_record import BatchKind

router = APIRouter()


@router.post("/nodes/{node_id}/workflows/batch/preview", response_model=PreviewResponse)
def preview_workflow_batch(
    request: Request, node_id: int, payload: WorkflowPreviewRequest
) -> PreviewResponse:
    service = batch_service(request, BatchKind.WORKFLOW)
    summary = service.preview(
        node_id,
        payload.include_descendants,
        payload.policy(),
        workflow_key=payload.workflow_key,
        parameters=payload.parameters,
    )
    return PreviewResponse.from_summary(summary)


@router.post(
    "/nodes/{node_id}/workflows/batch/execute",
    response_model=ExecuteResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def execute_workflow_batch(
    request: Request, node_id: int, payload: WorkflowExecuteRequest
) -> ExecuteResponse:
    service = batch_service(request, BatchKind.WORKFLOW)
    record = service.execute(
        node_id,
        payload.include_descendants,
        payload.policy(),
        concurrency=payload.concurrency,
        workflow_key=payload.workflow_key,
        parameters=payload.parameters,
    )
    return ExecuteResponse(
        batch_id=record.batch_id,
        status=record.status.value,
        total=record.total,
        message=record.error_message or "batch workflow submitted",
    )


@router.get("/workflows/batches")
def list_workflow_batches(
    request: Request,
    limit: int = Query(20),
    offset: int = Query(0, ge=0),
    workflow_key: str | None = Query(None),
) -> dict[str, Any]:
    service = batch_service(request, BatchKind.WORKFLOW)
    page = service.list_batches(limit=limit, offset=offset, workflow_key=workflow_key)
    return page_view(page, service.record_is_stale)


@router.get("/workflows/batches/{batch_id}")
def get_workflow_batch(request: Request, batch_id: str) -> dict[str, Any]:
    service = batch_service(request, BatchKind.WORKFLOW)
    record = service.get_batch(batch_id)
    return batch_view(record, stale=service.record_is_stale(record))


@router.post("/workflows/batches/{batch_id}/cancel")
def cancel_workflow_batch(request: Request, batch_id: str) -> dict[str, Any]:
    service = batch_service(request, BatchKind.WORKFLOW)
    record = service.cancel_batch(batch_id)
    return batch_view(record, stale=service.record_is_stale(record))
