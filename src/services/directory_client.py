"""Client for the external tree/document directory service."""

from __future__ import annotations

import uuid
from typing import Any

import requests
import structlog

from src.utils.retry import RETRYABLE_STATUS_CODES, TransientServiceError, retry_with_logging

logger = structlog.get_logger(__name__)


class DirectoryError(Exception):
    """The directory answered with an error status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class DirectoryNotFoundError(DirectoryError):
    """The requested node or document does not exist."""


class DirectoryClient:
    """Read-only client for nodes, their children and bound documents.

    Only the calls needed to enumerate batch targets are implemented.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        user_id: str = "batch-orchestrator",
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json", "x-user-id": user_id})
        if api_key:
            self.session.headers["x-api-key"] = api_key

    def _request_id(self) -> str:
        """Forward the inbound request id when one is bound to the log context."""
        bound = structlog.contextvars.get_contextvars().get("request_id")
        return str(bound) if bound else str(uuid.uuid4())

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = self.session.get(
            f"{self.base_url}{path}",
            params=params,
            headers={"x-request-id": self._request_id()},
            timeout=self.timeout,
        )
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise TransientServiceError("directory", response.status_code, response.text[:200])
        if response.status_code == 404:
            raise DirectoryNotFoundError(f"directory resource not found: {path}", status_code=404)
        if response.status_code >= 400:
            logger.error(
                "directory_request_failed",
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise DirectoryError(
                f"directory request {path} failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        return response.json()

    @retry_with_logging(max_attempts=3)
    def get_node(self, node_id: int) -> dict[str, Any]:
        """Fetch a node: id, name, path, parent_id, deleted_at."""
        node: dict[str, Any] = self._get(f"/api/v1/nodes/{node_id}")
        return node

    @retry_with_logging(max_attempts=3)
    def list_children(self, node_id: int) -> list[dict[str, Any]]:
        """List the direct children of a node."""
        children = self._get(f"/api/v1/nodes/{node_id}/children")
        return list(children or [])

    @retry_with_logging(max_attempts=3)
    def list_node_documents(
        self,
        node_id: int,
        page: int = 1,
        size: int = 100,
        include_descendants: bool = False,
    ) -> dict[str, Any]:
        """Fetch one page of documents bound to a node.

        Returns a dict with ``items``, ``page``, ``size`` and ``total``.
        """
        data = self._get(
            f"/api/v1/nodes/{node_id}/documents",
            params={
                "include_descendants": str(include_descendants).lower(),
                "page": page,
                "size": size,
            },
        )
        data = data or {}
        return {
            "items": list(data.get("items") or []),
            "page": data.get("page", page),
            "size": data.get("size", size),
            "total": int(data.get("total") or 0),
        }

    @retry_with_logging(max_attempts=3)
    def list_source_documents(self, node_id: int) -> list[dict[str, Any]]:
        """List the source (input) documents of a node.

        Each entry has ``document_id`` and, when expanded, a nested ``document``.
        """
        sources = self._get(f"/api/v1/nodes/{node_id}/sources")
        return list(sources or [])
