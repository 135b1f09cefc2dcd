"""Batch record model: the persisted state of one orchestration run."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from src.models.skip_policy import SkipPolicy


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def new_batch_id() -> str:
    """Generate an opaque batch identifier."""
    return f"batch_{uuid.uuid4().hex}"


class BatchKind(StrEnum):
    """Which trigger a batch drives."""

    WORKFLOW = "workflow"
    SYNC = "sync"


class BatchStatus(StrEnum):
    """Batch lifecycle: pending -> running -> completed | failed | cancelled."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED})


class TargetOutcome(StrEnum):
    """Per-target result of a batch."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class TargetResult(BaseModel):
    """Recorded outcome for one enumerated target."""

    model_config = ConfigDict(extra="forbid")

    target_id: int
    display_name: str
    display_path: str
    outcome: TargetOutcome
    error: str | None = None
    skip_reason: str | None = None
    job_id: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @model_validator(mode="after")
    def validate_outcome_fields(self) -> TargetResult:
        """error is set iff failed; skip_reason is set iff skipped."""
        if (self.outcome == TargetOutcome.FAILED) != bool(self.error):
            msg = "error must be set exactly when outcome is failed"
            raise ValueError(msg)
        if (self.outcome == TargetOutcome.SKIPPED) != bool(self.skip_reason):
            msg = "skip_reason must be set exactly when outcome is skipped"
            raise ValueError(msg)
        return self


class OutstandingTarget(BaseModel):
    """An eligible target that has no recorded result yet."""

    model_config = ConfigDict(extra="forbid")

    target_id: int
    display_name: str
    display_path: str
    dispatched_at: datetime | None = None
    job_id: str | None = None


class BatchDetails(BaseModel):
    """Per-target state of a batch."""

    model_config = ConfigDict(extra="forbid")

    target_results: list[TargetResult] = Field(default_factory=list)
    outstanding: list[OutstandingTarget] = Field(default_factory=list)

    def result_for(self, target_id: int) -> TargetResult | None:
        for result in self.target_results:
            if result.target_id == target_id:
                return result
        return None


class BatchRecord(BaseModel):
    """One root-triggered, policy-filtered, concurrency-bounded run.

    Counters are maintained by the executor through the status aggregator;
    ``progress`` is derived from them and cannot be set.
    """

    model_config = ConfigDict(extra="forbid")

    batch_id: str = Field(default_factory=new_batch_id)
    kind: BatchKind
    workflow_key: str | None = None
    root_target_id: int
    include_descendants: bool = True
    concurrency: int = Field(default=1, ge=1)
    policy: SkipPolicy = Field(default_factory=SkipPolicy)
    parameters: dict[str, Any] = Field(default_factory=dict)
    status: BatchStatus = BatchStatus.PENDING
    total: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)
    failed_count: int = Field(default=0, ge=0)
    skipped_count: int = Field(default=0, ge=0)
    cancel_requested: bool = False
    error_message: str | None = None
    details: BatchDetails = Field(default_factory=BatchDetails)
    created_at: datetime = Field(default_factory=_utc_now)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def done_count(self) -> int:
        return self.success_count + self.failed_count + self.skipped_count

    @computed_field  # type: ignore[prop-decorator]
    @property
    def progress(self) -> float:
        """Percentage of targets with a recorded outcome, 0 for an empty batch."""
        if self.total == 0:
            return 0.0
        return round(100.0 * self.done_count / self.total, 2)

    @model_validator(mode="after")
    def validate_counters(self) -> BatchRecord:
        """Partial sum never exceeds total and equals it once terminal."""
        if self.done_count > self.total:
            msg = f"outcome counts ({self.done_count}) exceed total ({self.total})"
            raise ValueError(msg)
        if self.status.is_terminal and self.done_count != self.total:
            msg = f"terminal batch must account for all {self.total} targets, got {self.done_count}"
            raise ValueError(msg)
        return self

    @model_validator(mode="after")
    def validate_kind_options(self) -> BatchRecord:
        """Workflow batches carry a workflow_key; sync batches do not."""
        if self.kind == BatchKind.WORKFLOW and not self.workflow_key:
            msg = "workflow_key is required for workflow batches"
            raise ValueError(msg)
        if self.kind == BatchKind.SYNC and self.workflow_key is not None:
            msg = "workflow_key is not allowed for sync batches"
            raise ValueError(msg)
        return self
