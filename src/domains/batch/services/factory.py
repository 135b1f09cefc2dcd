"""Wiring of batch services from configuration."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from src.domains.batch.repositories.batch_repository import BatchRepository
from src.domains.batch.services.batch_executor import BatchExecutor
from src.domains.batch.services.batch_service import BatchService
from src.domains.batch.services.preview_service import PreviewService
from src.domains.batch.services.target_enumerator import (
    DocumentTargetEnumerator,
    NodeTargetEnumerator,
)
from src.domains.batch.services.triggers import SyncTrigger, WorkflowTrigger
from src.models.batch_record import BatchKind
from src.services.directory_client import DirectoryClient
from src.services.prefect_client import PrefectClient

if TYPE_CHECKING:
    from src.models.config import Config
    from src.services.database import Database
    from src.services.protocols import DirectoryProtocol, TriggerProtocol


def build_batch_services(
    config: Config,
    db: Database,
    directory: DirectoryProtocol | None = None,
    triggers: dict[BatchKind, TriggerProtocol] | None = None,
) -> dict[BatchKind, BatchService]:
    """Build the workflow and sync batch services sharing one repository.

    ``directory`` and ``triggers`` default to HTTP clients built from config.
    """
    if directory is None:
        directory = DirectoryClient(
            config.directory_base_url,
            api_key=config.directory_api_key,
            user_id=config.directory_user_id,
            timeout=config.directory_timeout_seconds,
        )
    if triggers is None:
        prefect = PrefectClient(config.prefect_base_url, timeout=config.prefect_timeout_seconds)
        triggers = {
            BatchKind.WORKFLOW: WorkflowTrigger(prefect, config.workflow_deployment_template),
            BatchKind.SYNC: SyncTrigger(prefect, config.sync_deployment_name),
        }

    repository = BatchRepository(db)
    enumerators = {
        BatchKind.WORKFLOW: NodeTargetEnumerator(directory),
        BatchKind.SYNC: DocumentTargetEnumerator(directory),
    }

    services: dict[BatchKind, BatchService] = {}
    for kind, enumerator in enumerators.items():
        trigger = triggers[kind]
        executor = BatchExecutor(
            kind,
            enumerator,
            trigger,
            repository,
            default_concurrency=config.default_concurrency,
            max_concurrency=config.max_concurrency,
            poll_interval=config.job_poll_interval_seconds,
            await_completion=config.await_job_completion,
            fail_on_target_failure=config.fail_batch_on_target_failure,
        )
        services[kind] = BatchService(
            kind,
            PreviewService(enumerator, trigger if kind == BatchKind.WORKFLOW else None),
            executor,
            repository,
            stale_after=timedelta(minutes=config.stale_after_minutes),
        )
    return services
