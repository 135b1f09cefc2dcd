"""Client for the Prefect REST API (deployments and flow runs)."""

from __future__ import annotations

from typing import Any

import requests
import structlog

from src.utils.retry import RETRYABLE_STATUS_CODES, TransientServiceError, retry_with_logging

logger = structlog.get_logger(__name__)

# Flow run state types after which a run will not change again.
TERMINAL_STATE_TYPES = frozenset({"COMPLETED", "FAILED", "CRASHED", "CANCELLED"})
FAILED_STATE_TYPES = frozenset({"FAILED", "CRASHED", "CANCELLED"})


class PrefectError(Exception):
    """Prefect rejected a request or returned something unusable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class DeploymentNotFoundError(PrefectError):
    """No deployment exists with the requested name."""


class PrefectClient:
    """Thin wrapper over the Prefect server endpoints the orchestrator uses."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def _check(self, response: requests.Response, operation: str) -> None:
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise TransientServiceError("prefect", response.status_code, response.text[:200])
        if response.status_code >= 400:
            logger.error(
                "prefect_request_failed",
                operation=operation,
                status_code=response.status_code,
                body=response.text[:500],
            )
            msg = f"prefect {operation} failed with HTTP {response.status_code}: {response.text[:200]}"
            raise PrefectError(msg, status_code=response.status_code)

    @retry_with_logging(max_attempts=3)
    def get_deployment_by_name(self, deployment_name: str) -> dict[str, Any]:
        """Find a deployment by name. Raises DeploymentNotFoundError."""
        response = self.session.post(
            f"{self.base_url}/api/deployments/filter",
            json={"deployments": {"name": {"any_": [deployment_name]}}, "limit": 10},
            timeout=self.timeout,
        )
        self._check(response, "deployment_filter")
        deployments = response.json() or []
        if not deployments:
            msg = f"deployment not found: {deployment_name}"
            raise DeploymentNotFoundError(msg, status_code=404)
        deployment: dict[str, Any] = deployments[0]
        return deployment

    @retry_with_logging(max_attempts=4)
    def create_flow_run(self, deployment_id: str, parameters: dict[str, Any]) -> dict[str, Any]:
        """Create a flow run for a deployment; returns the flow run (id, state)."""
        response = self.session.post(
            f"{self.base_url}/api/deployments/{deployment_id}/create_flow_run",
            json={"parameters": parameters},
            timeout=self.timeout,
        )
        self._check(response, "create_flow_run")
        flow_run: dict[str, Any] = response.json()
        logger.info("flow_run_created", deployment_id=deployment_id, flow_run_id=flow_run.get("id"))
        return flow_run

    @retry_with_logging(max_attempts=3)
    def get_flow_run(self, flow_run_id: str) -> dict[str, Any]:
        """Fetch a flow run including its current ``state``."""
        response = self.session.get(
            f"{self.base_url}/api/flow_runs/{flow_run_id}",
            timeout=self.timeout,
        )
        self._check(response, "get_flow_run")
        flow_run: dict[str, Any] = response.json()
        return flow_run

    def cancel_flow_run(self, flow_run_id: str) -> None:
        """Request cancellation of a flow run.

        404 and 409 mean the run is gone or already terminal and are ignored.
        """
        response = self.session.post(
            f"{self.base_url}/api/flow_runs/{flow_run_id}/set_state",
            json={"state": {"type": "CANCELLING"}},
            timeout=self.timeout,
        )
        if response.status_code in (404, 409):
            logger.info(
                "flow_run_cancel_ignored",
                flow_run_id=flow_run_id,
                status_code=response.status_code,
            )
            return
        self._check(response, "cancel_flow_run")


def flow_run_state(flow_run: dict[str, Any]) -> tuple[str, str | None]:
    """Return (state type, state message) of a flow run payload."""
    state = flow_run.get("state") or {}
    state_type = str(state.get("type") or flow_run.get("state_type") or "PENDING").upper()
    return state_type, state.get("message")
