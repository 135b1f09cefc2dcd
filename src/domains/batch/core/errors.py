"""Exception taxonomy for batch orchestration.

Only validation and enumeration failures reach the caller synchronously.
Trigger failures are caught per target and recorded on the batch.
"""

from __future__ import annotations


class BatchError(Exception):
    """Base exception for batch orchestration."""


class BatchValidationError(BatchError):
    """Request rejected before any batch record is created."""


class EnumerationError(BatchError):
    """The target set could not be produced."""


class RootNotFoundError(EnumerationError):
    """The root target does not exist in the directory."""

    def __init__(self, root_target_id: int) -> None:
        self.root_target_id = root_target_id
        super().__init__(f"root target {root_target_id} not found")


class TriggerError(BatchError):
    """Starting or polling external work for a single target failed."""


class BatchNotFoundError(BatchError):
    """No batch exists with the requested id."""

    def __init__(self, batch_id: str) -> None:
        self.batch_id = batch_id
        super().__init__(f"batch {batch_id} not found")


class BatchStateError(BatchError):
    """The requested change is not allowed in the batch's current status."""
