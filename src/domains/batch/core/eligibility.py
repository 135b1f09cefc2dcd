"""Eligibility rules deciding whether a target runs or is skipped.

Rules are checked in a fixed order and the first match supplies the reason:

1. skip_no_source       -- node has no (non-excluded) source documents
2. skip_no_output       -- node has no output documents
3. skip_name_contains   -- display name contains any configured substring
4. skip_doc_types       -- document type is in the excluded set
5. require_sync_target  -- document lacks a valid sync_target
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from src.models.target import TargetKind

if TYPE_CHECKING:
    from src.models.skip_policy import SkipPolicy
    from src.models.target import Target

REASON_NO_SOURCE = "no source documents"
REASON_NO_OUTPUT = "no output documents"
REASON_SYNC_TARGET_MISSING = "sync_target not configured"


def name_contains_reason(pattern: str) -> str:
    return f"name contains '{pattern}'"


def doc_type_reason(doc_type: str) -> str:
    return f"document type '{doc_type}' is excluded"


def sync_target_invalid_reason(detail: str) -> str:
    return f"invalid sync_target: {detail}"


def count_source_documents(target: Target, excluded_types: list[str]) -> int:
    """Count source documents whose type is not excluded.

    Targets without per-source type information fall back to the id count.
    """
    if not target.source_doc_types:
        return len(target.source_doc_ids)
    excluded = set(excluded_types)
    return sum(1 for doc_type in target.source_doc_types if doc_type not in excluded)


def evaluate(target: Target, policy: SkipPolicy) -> tuple[bool, str | None]:
    """Decide whether a target can execute under a skip policy.

    Returns (can_execute, skip_reason). skip_reason is None iff can_execute.
    Pure: identical inputs always give identical output.
    """
    if (
        policy.skip_no_source
        and target.kind == TargetKind.NODE
        and count_source_documents(target, policy.skip_doc_types) == 0
    ):
        return False, REASON_NO_SOURCE

    if policy.skip_no_output and target.kind == TargetKind.NODE and not target.output_doc_count:
        return False, REASON_NO_OUTPUT

    for pattern in policy.skip_name_contains:
        if pattern in target.display_name:
            return False, name_contains_reason(pattern)

    if (
        target.kind == TargetKind.DOCUMENT
        and target.doc_type is not None
        and target.doc_type in policy.skip_doc_types
    ):
        return False, doc_type_reason(target.doc_type)

    if policy.require_sync_target and target.kind == TargetKind.DOCUMENT:
        if target.sync_target_error:
            return False, sync_target_invalid_reason(target.sync_target_error)
        if target.sync_target is None:
            return False, REASON_SYNC_TARGET_MISSING

    return True, None


def partition(
    targets: list[Target], policy: SkipPolicy
) -> tuple[list[Target], list[tuple[Target, str]]]:
    """Split targets into (eligible, [(skipped, reason)]) preserving order."""
    eligible: list[Target] = []
    skipped: list[tuple[Target, str]] = []
    for target in targets:
        can_execute, reason = evaluate(target, policy)
        if can_execute:
            eligible.append(target)
        else:
            skipped.append((target, reason or ""))
    return eligible, skipped
