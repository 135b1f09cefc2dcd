"""Parsing of the ``sync_target`` entry in document metadata."""

from __future__ import annotations

import json
import re
from typing import Any

from src.models.target import SyncTarget

IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


class SyncTargetError(ValueError):
    """The sync_target entry is present but unusable."""


def _validate_identifier(kind: str, value: Any) -> str | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str) or not IDENTIFIER_PATTERN.fullmatch(value):
        msg = f"invalid {kind} name: {value!r} (must match {IDENTIFIER_PATTERN.pattern})"
        raise SyncTargetError(msg)
    return value


def _record_id(value: Any) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or value is None:
        msg = "sync_target.record_id is required"
        raise SyncTargetError(msg)
    if isinstance(value, float):
        if not value.is_integer():
            msg = f"sync_target.record_id must be an integer, got {value}"
            raise SyncTargetError(msg)
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        msg = f"sync_target.record_id must be an integer, got {type(value).__name__}"
        raise SyncTargetError(msg)
    if value <= 0:
        msg = "sync_target.record_id is required"
        raise SyncTargetError(msg)
    return value


def parse_sync_target(metadata: dict[str, Any] | None) -> SyncTarget | None:
    """Parse and validate a document's sync_target configuration.

    Accepted forms of ``metadata["sync_target"]``:
    - a mapping with ``record_id`` and optional ``table``, ``field``, ``connection``
    - a JSON string encoding such a mapping
    - a bare number, taken as ``record_id``

    Returns None when no configuration is present (missing key, None, blank
    string). Raises SyncTargetError when it is present but invalid.
    """
    if not metadata:
        return None
    raw = metadata.get("sync_target")
    if raw is None:
        return None

    if isinstance(raw, str):
        stripped = raw.strip()
        if not stripped:
            return None
        try:
            raw = json.loads(stripped)
        except json.JSONDecodeError as e:
            msg = f"failed to decode sync_target JSON: {e.msg}"
            raise SyncTargetError(msg) from e

    if isinstance(raw, bool):
        msg = "unsupported sync_target type: bool"
        raise SyncTargetError(msg)
    if isinstance(raw, int | float):
        return SyncTarget(record_id=_record_id(raw))
    if not isinstance(raw, dict):
        msg = f"unsupported sync_target type: {type(raw).__name__}"
        raise SyncTargetError(msg)

    return SyncTarget(
        record_id=_record_id(raw.get("record_id")),
        table=_validate_identifier("table", raw.get("table")),
        field=_validate_identifier("field", raw.get("field")),
        connection=_validate_identifier("connection", raw.get("connection")),
    )
