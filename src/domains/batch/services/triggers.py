"""Triggers that start per-target work as Prefect flow runs."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

import structlog

from src.domains.batch.core.errors import BatchValidationError, TriggerError
from src.services.prefect_client import (
    FAILED_STATE_TYPES,
    DeploymentNotFoundError,
    PrefectError,
    flow_run_state,
)
from src.services.protocols import JobHandle, JobState, JobStatus
from src.utils.retry import TransientServiceError

if TYPE_CHECKING:
    from src.models.target import Target
    from src.services.prefect_client import PrefectClient

logger = structlog.get_logger(__name__)

# requests exceptions derive from OSError.
_PREFECT_FAILURES: tuple[type[Exception], ...] = (PrefectError, TransientServiceError, OSError)


class PrefectTrigger:
    """Base trigger: resolve a deployment, create one flow run per target, poll it.

    Subclasses choose the deployment and build the flow parameters.
    """

    def __init__(self, prefect: PrefectClient) -> None:
        self.prefect = prefect
        self._deployment_ids: dict[str, str] = {}
        self._cache_lock = threading.Lock()

    def deployment_name(self, workflow_key: str | None) -> str:
        raise NotImplementedError

    def build_parameters(self, target: Target, context: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def _deployment_id(self, workflow_key: str | None) -> str:
        name = self.deployment_name(workflow_key)
        with self._cache_lock:
            cached = self._deployment_ids.get(name)
        if cached:
            return cached
        deployment = self.prefect.get_deployment_by_name(name)
        deployment_id = str(deployment["id"])
        with self._cache_lock:
            self._deployment_ids[name] = deployment_id
        return deployment_id

    def validate(self, workflow_key: str | None, parameters: dict[str, Any]) -> None:
        """Check the deployment exists. Unknown deployments are a validation error."""
        try:
            self._deployment_id(workflow_key)
        except DeploymentNotFoundError as e:
            msg = f"no deployment for workflow '{workflow_key or self.deployment_name(None)}'"
            raise BatchValidationError(msg) from e
        except _PREFECT_FAILURES as e:
            msg = f"failed to resolve deployment: {e}"
            raise TriggerError(msg) from e

    def trigger(self, target: Target, context: dict[str, Any]) -> JobHandle:
        """Create a flow run for one target."""
        try:
            deployment_id = self._deployment_id(context.get("workflow_key"))
            flow_run = self.prefect.create_flow_run(
                deployment_id, self.build_parameters(target, context)
            )
        except _PREFECT_FAILURES as e:
            msg = f"failed to start flow run: {e}"
            raise TriggerError(msg) from e

        flow_run_id = flow_run.get("id")
        if not flow_run_id:
            msg = "prefect returned a flow run without an id"
            raise TriggerError(msg)
        return JobHandle(job_id=str(flow_run_id), target_id=target.target_id)

    def poll(self, handle: JobHandle) -> JobStatus:
        """Map the flow run's Prefect state to a JobStatus."""
        try:
            flow_run = self.prefect.get_flow_run(handle.job_id)
        except _PREFECT_FAILURES as e:
            msg = f"failed to read flow run {handle.job_id}: {e}"
            raise TriggerError(msg) from e

        state_type, message = flow_run_state(flow_run)
        if state_type == "COMPLETED":
            return JobStatus(state=JobState.SUCCEEDED, message=message)
        if state_type in FAILED_STATE_TYPES:
            detail = message or f"flow run ended in state {state_type}"
            return JobStatus(state=JobState.FAILED, message=detail, details={"state": state_type})
        return JobStatus(state=JobState.RUNNING, details={"state": state_type})

    def cancel(self, handle: JobHandle) -> None:
        """Ask Prefect to cancel a flow run."""
        try:
            self.prefect.cancel_flow_run(handle.job_id)
        except _PREFECT_FAILURES as e:
            msg = f"failed to cancel flow run {handle.job_id}: {e}"
            raise TriggerError(msg) from e


class WorkflowTrigger(PrefectTrigger):
    """Runs a content-generation workflow for one node."""

    def __init__(self, prefect: PrefectClient, deployment_template: str = "{workflow_key}") -> None:
        super().__init__(prefect)
        self.deployment_template = deployment_template

    def deployment_name(self, workflow_key: str | None) -> str:
        if not workflow_key:
            msg = "workflow_key is required"
            raise BatchValidationError(msg)
        return self.deployment_template.format(workflow_key=workflow_key)

    def build_parameters(self, target: Target, context: dict[str, Any]) -> dict[str, Any]:
        return {
            **context.get("parameters", {}),
            "node_id": target.target_id,
            "source_doc_ids": list(target.source_doc_ids),
            "batch_id": context.get("batch_id"),
        }


class SyncTrigger(PrefectTrigger):
    """Runs the MySQL sync flow for one document."""

    def __init__(self, prefect: PrefectClient, deployment: str = "sync-to-mysql") -> None:
        super().__init__(prefect)
        self.deployment = deployment

    def deployment_name(self, workflow_key: str | None) -> str:
        return self.deployment

    def build_parameters(self, target: Target, context: dict[str, Any]) -> dict[str, Any]:
        sync_target = target.sync_target.model_dump(exclude_none=True) if target.sync_target else None
        return {
            **context.get("parameters", {}),
            "document_id": target.target_id,
            "node_id": target.node_id,
            "sync_target": sync_target,
            "batch_id": context.get("batch_id"),
        }
