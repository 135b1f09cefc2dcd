"""Target models: enumerated candidates and their preview view."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TargetKind(StrEnum):
    """What a batch item points at in the directory."""

    NODE = "node"
    DOCUMENT = "document"


class SyncTarget(BaseModel):
    """Destination of a document sync job, parsed from document metadata."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    record_id: int = Field(gt=0)
    table: str | None = None
    field: str | None = None
    connection: str | None = None


class Target(BaseModel):
    """A node or document that is a candidate for one batch item.

    Kind-specific hints travel with the target so eligibility can be decided
    without further directory calls: source documents and output count for
    nodes, type and sync configuration for documents.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    target_id: int
    kind: TargetKind
    display_name: str
    display_path: str
    depth: int = 0
    node_id: int | None = None
    source_doc_ids: tuple[int, ...] = ()
    source_doc_types: tuple[str | None, ...] = ()
    output_doc_count: int | None = None
    doc_type: str | None = None
    sync_target: SyncTarget | None = None
    sync_target_error: str | None = None


class TargetPreviewItem(BaseModel):
    """One row of a preview: whether a target would run, and why not."""

    target_id: int
    display_name: str
    display_path: str
    can_execute: bool
    skip_reason: str | None = None

    @model_validator(mode="after")
    def validate_skip_reason(self) -> TargetPreviewItem:
        """skip_reason is present exactly when the target cannot execute."""
        if self.can_execute and self.skip_reason is not None:
            msg = "skip_reason must be empty for an executable target"
            raise ValueError(msg)
        if not self.can_execute and not self.skip_reason:
            msg = "skip_reason is required when can_execute is False"
            raise ValueError(msg)
        return self


class PreviewSummary(BaseModel):
    """Result of a dry run over a root target."""

    root_target_id: int
    include_descendants: bool
    workflow_key: str | None = None
    total: int
    can_execute_count: int
    will_skip_count: int
    items: list[TargetPreviewItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_counts(self) -> PreviewSummary:
        """Executable and skipped counts partition the total."""
        if self.can_execute_count + self.will_skip_count != self.total:
            msg = "can_execute_count + will_skip_count must equal total"
            raise ValueError(msg)
        return self
