"""Skip policy model: the rules that exclude a target without error."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_list(value: Any) -> Any:
    """Wrap a bare string in a list and drop empty strings."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if isinstance(value, list):
        return [item for item in value if not (isinstance(item, str) and not item.strip())]
    return value


class SkipPolicy(BaseModel):
    """Independently toggleable skip rules.

    Rules are evaluated in declaration order and the first match supplies
    the skip reason.
    """

    model_config = ConfigDict(extra="forbid")

    skip_no_source: bool = False
    skip_no_output: bool = False
    skip_name_contains: list[str] = Field(default_factory=list)
    skip_doc_types: list[str] = Field(default_factory=list)
    require_sync_target: bool = False

    @field_validator("skip_name_contains", mode="before")
    @classmethod
    def coerce_name_patterns(cls, value: Any) -> Any:
        """Accept a single substring as well as a list."""
        return _as_list(value)

    @field_validator("skip_doc_types", mode="before")
    @classmethod
    def coerce_doc_types(cls, value: Any) -> Any:
        """Accept a single type as well as a list."""
        return _as_list(value)
