"""Service protocols defining interfaces for dependency injection."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from src.models.target import Target


class DirectoryProtocol(Protocol):
    """Read-only access to the external tree/document directory."""

    def get_node(self, node_id: int) -> dict[str, Any]: ...

    def list_children(self, node_id: int) -> list[dict[str, Any]]: ...

    def list_node_documents(
        self,
        node_id: int,
        page: int = 1,
        size: int = 100,
        include_descendants: bool = False,
    ) -> dict[str, Any]: ...

    def list_source_documents(self, node_id: int) -> list[dict[str, Any]]: ...


class TargetEnumeratorProtocol(Protocol):
    """Expands a root target into ordered candidate targets."""

    def enumerate(self, root_target_id: int, include_descendants: bool) -> list[Target]: ...


class JobState(StrEnum):
    """Coarse state of an external job as seen by the orchestrator."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class JobHandle:
    """Reference to external work started for one target."""

    job_id: str
    target_id: int


@dataclass(frozen=True)
class JobStatus:
    """Result of polling an external job."""

    state: JobState
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.state != JobState.RUNNING


class TriggerProtocol(Protocol):
    """Starts and observes external work for single targets."""

    def validate(self, workflow_key: str | None, parameters: dict[str, Any]) -> None: ...

    def trigger(self, target: Target, params: dict[str, Any]) -> JobHandle: ...

    def poll(self, handle: JobHandle) -> JobStatus: ...

    def cancel(self, handle: JobHandle) -> None: ...
