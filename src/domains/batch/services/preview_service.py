"""Preview service: dry run of enumeration and eligibility."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from src.domains.batch.core.eligibility import evaluate
from src.models.target import PreviewSummary, TargetPreviewItem

if TYPE_CHECKING:
    from src.models.skip_policy import SkipPolicy
    from src.services.protocols import TargetEnumeratorProtocol, TriggerProtocol

logger = structlog.get_logger(__name__)


class PreviewService:
    """Shows what a batch would do without triggering anything.

    Safe to call repeatedly and concurrently: it only reads the directory
    and, when a trigger is given, checks the workflow resolves.
    """

    def __init__(
        self,
        enumerator: TargetEnumeratorProtocol,
        trigger: TriggerProtocol | None = None,
    ) -> None:
        self.enumerator = enumerator
        self.trigger = trigger

    def preview(
        self,
        root_target_id: int,
        include_descendants: bool,
        policy: SkipPolicy,
        workflow_key: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> PreviewSummary:
        """Enumerate targets and evaluate each against the policy.

        Raises EnumerationError, or BatchValidationError for an unknown workflow.
        """
        if self.trigger is not None:
            self.trigger.validate(workflow_key, parameters or {})

        targets = self.enumerator.enumerate(root_target_id, include_descendants)

        items: list[TargetPreviewItem] = []
        for target in targets:
            can_execute, reason = evaluate(target, policy)
            items.append(
                TargetPreviewItem(
                    target_id=target.target_id,
                    display_name=target.display_name,
                    display_path=target.display_path,
                    can_execute=can_execute,
                    skip_reason=reason,
                )
            )

        can_execute_count = sum(1 for item in items if item.can_execute)
        summary = PreviewSummary(
            root_target_id=root_target_id,
            include_descendants=include_descendants,
            workflow_key=workflow_key,
            total=len(items),
            can_execute_count=can_execute_count,
            will_skip_count=len(items) - can_execute_count,
            items=items,
        )
        logger.info(
            "batch_previewed",
            root_target_id=root_target_id,
            workflow_key=workflow_key,
            total=summary.total,
            can_execute=summary.can_execute_count,
            will_skip=summary.will_skip_count,
        )
        return summary
