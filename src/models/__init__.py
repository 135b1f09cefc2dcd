"""Pydantic data models for the batch orchestrator."""

from src.models.batch_record import (
    BatchDetails,
    BatchKind,
    BatchRecord,
    BatchStatus,
    OutstandingTarget,
    TargetOutcome,
    TargetResult,
)
from src.models.config import Config
from src.models.skip_policy import SkipPolicy
from src.models.target import (
    PreviewSummary,
    SyncTarget,
    Target,
    TargetKind,
    TargetPreviewItem,
)

__all__ = [
    "BatchDetails",
    "BatchKind",
    "BatchRecord",
    "BatchStatus",
    "Config",
    "OutstandingTarget",
    "PreviewSummary",
    "SkipPolicy",
    "SyncTarget",
    "Target",
    "TargetKind",
    "TargetOutcome",
    "TargetPreviewItem",
    "TargetResult",
]
