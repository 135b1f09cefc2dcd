"""Access to application-scoped services from request handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import Request

    from src.domains.batch.services.batch_service import BatchService
    from src.models.batch_record import BatchKind


def batch_service(request: Request, kind: BatchKind) -> BatchService:
    """Return the batch service for a kind, built once in create_app."""
    services: dict[BatchKind, BatchService] = request.app.state.batch_services
    return services[kind]
