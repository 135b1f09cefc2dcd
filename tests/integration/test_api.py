"""Integration tests for the HTTP API.

The full app is built by create_app over a real temp database, with the
directory and Prefect triggers replaced by in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import ExitStack
from typing import TYPE_CHECKING, Any

import pytest
from fastapi.testclient import TestClient

from src.api.app import create_app
from src.api.routers import health
from src.models.batch_record import BatchKind
from tests.fakes import FakeDirectory, FakeTrigger

if TYPE_CHECKING:
    from src.models.config import Config
    from src.services.database import Database

ClientFactory = Callable[[FakeDirectory], TestClient]


def _tree(sourced_children: int, unsourced_children: int = 0) -> FakeDirectory:
    """A root with a source document and children with or without sources."""
    fake = FakeDirectory()
    fake.add_node(1, "Portfolio")
    fake.add_document(1, 10, "brief", source=True)
    fake.add_document(1, 11, "report")
    node_id = 2
    for i in range(sourced_children):
        fake.add_node(node_id, f"Fund {i}", parent_id=1)
        fake.add_document(node_id, 100 + node_id, "brief", source=True)
        node_id += 1
    for i in range(unsourced_children):
        fake.add_node(node_id, f"Empty {i}", parent_id=1)
        node_id += 1
    return fake


@pytest.fixture
def workflow_trigger() -> FakeTrigger:
    return FakeTrigger()


@pytest.fixture
def sync_trigger() -> FakeTrigger:
    return FakeTrigger()


@pytest.fixture
def make_client(
    config: Config, db: Database, workflow_trigger: FakeTrigger, sync_trigger: FakeTrigger
) -> Iterator[ClientFactory]:
    with ExitStack() as stack:

        def factory(directory: FakeDirectory) -> TestClient:
            app = create_app(
                config,
                db=db,
                directory=directory,
                triggers={BatchKind.WORKFLOW: workflow_trigger, BatchKind.SYNC: sync_trigger},
            )
            return stack.enter_context(TestClient(app))

        yield factory


def _wait(client: TestClient, kind: BatchKind, batch_id: str) -> None:
    assert client.app.state.batch_services[kind].executor.wait(batch_id, timeout=10)  # type: ignore[attr-defined]


def _execute_workflow(client: TestClient, node_id: int, **body: Any) -> dict[str, Any]:
    body.setdefault("workflow_key", "node-generate-documents")
    response = client.post(f"/api/v1/nodes/{node_id}/workflows/batch/execute", json=body)
    assert response.status_code == 202, response.text
    return response.json()


class TestWorkflowBatchScenarios:
    """End-to-end workflow batch behavior over HTTP."""

    def test_preview_counts_no_source_skips(
        self, make_client: ClientFactory, workflow_trigger: FakeTrigger
    ) -> None:
        client = make_client(_tree(sourced_children=2, unsourced_children=2))
        response = client.post(
            "/api/v1/nodes/1/workflows/batch/preview",
            json={"workflow_key": "node-generate-documents", "skip_no_source": True},
        )

        assert response.status_code == 200
        body = response.json()
        assert (body["total"], body["can_execute"], body["will_skip"]) == (5, 3, 2)
        assert body["root_node_id"] == 1
        skipped = [item for item in body["items"] if not item["can_execute"]]
        assert [item["skip_reason"] for item in skipped] == ["no source documents"] * 2
        assert workflow_trigger.triggered == []

    def test_execute_completes_all_targets(
        self, make_client: ClientFactory, workflow_trigger: FakeTrigger
    ) -> None:
        workflow_trigger.delay = 0.02
        client = make_client(_tree(sourced_children=5))
        submitted = _execute_workflow(client, 1, concurrency=2, skip_no_source=True)
        assert submitted["total"] == 6
        assert submitted["message"] == "batch workflow submitted"
        _wait(client, BatchKind.WORKFLOW, submitted["batch_id"])

        batch = client.get(f"/api/v1/workflows/batches/{submitted['batch_id']}").json()
        assert batch["status"] == "completed"
        assert (batch["success_count"], batch["failed_count"], batch["skipped_count"]) == (6, 0, 0)
        assert batch["progress"] == 100.0
        assert batch["concurrency"] == 2
        assert batch["is_stale"] is False
        assert workflow_trigger.max_in_flight <= 2

    def test_trigger_failure_is_recorded_not_fatal(
        self, make_client: ClientFactory, workflow_trigger: FakeTrigger
    ) -> None:
        workflow_trigger.failing_targets.add(3)
        client = make_client(_tree(sourced_children=3))
        submitted = _execute_workflow(client, 1)
        _wait(client, BatchKind.WORKFLOW, submitted["batch_id"])

        batch = client.get(f"/api/v1/workflows/batches/{submitted['batch_id']}").json()
        assert batch["status"] == "completed"
        assert (batch["success_count"], batch["failed_count"]) == (3, 1)
        failed = [r for r in batch["details"]["target_results"] if r["outcome"] == "failed"]
        assert [r["target_id"] for r in failed] == [3]
        assert failed[0]["error"]

    def test_unknown_root_yields_failed_batch(self, make_client: ClientFactory) -> None:
        client = make_client(_tree(sourced_children=1))
        submitted = _execute_workflow(client, 999)
        assert submitted["status"] == "failed"

        batch = client.get(f"/api/v1/workflows/batches/{submitted['batch_id']}").json()
        assert batch["status"] == "failed"
        assert batch["total"] == 0
        assert batch["error_message"] == "root target 999 not found"

    def test_unknown_batch_is_404(self, make_client: ClientFactory) -> None:
        client = make_client(_tree(sourced_children=1))
        assert client.get("/api/v1/workflows/batches/batch_missing").status_code == 404
        assert client.get("/api/v1/sync/batches/batch_missing").status_code == 404

    def test_missing_workflow_key_is_400(self, make_client: ClientFactory) -> None:
        client = make_client(_tree(sourced_children=1))
        response = client.post("/api/v1/nodes/1/workflows/batch/execute", json={})
        assert response.status_code == 400
        assert "workflow_key" in response.json()["detail"]

    def test_unknown_workflow_is_400(
        self, make_client: ClientFactory, workflow_trigger: FakeTrigger
    ) -> None:
        workflow_trigger.unknown_workflows.add("nope")
        client = make_client(_tree(sourced_children=1))
        response = client.post(
            "/api/v1/nodes/1/workflows/batch/preview", json={"workflow_key": "nope"}
        )
        assert response.status_code == 400

    def test_invalid_concurrency_is_400(self, make_client: ClientFactory) -> None:
        client = make_client(_tree(sourced_children=1))
        response = client.post(
            "/api/v1/nodes/1/workflows/batch/execute",
            json={"workflow_key": "node-generate-documents", "concurrency": 0},
        )
        assert response.status_code == 400

    def test_preview_unknown_root_is_404(self, make_client: ClientFactory) -> None:
        client = make_client(_tree(sourced_children=1))
        response = client.post(
            "/api/v1/nodes/999/workflows/batch/preview",
            json={"workflow_key": "node-generate-documents"},
        )
        assert response.status_code == 404

    def test_preview_directory_failure_is_502(self, make_client: ClientFactory) -> None:
        directory = _tree(sourced_children=1)
        directory.failing_children.add(1)
        client = make_client(directory)
        response = client.post(
            "/api/v1/nodes/1/workflows/batch/preview",
            json={"workflow_key": "node-generate-documents"},
        )
        assert response.status_code == 502

    def test_cancel_running_batch(
        self, make_client: ClientFactory, workflow_trigger: FakeTrigger
    ) -> None:
        workflow_trigger.release.clear()
        client = make_client(_tree(sourced_children=3))
        submitted = _execute_workflow(client, 1, concurrency=1)
        assert workflow_trigger.entered.wait(timeout=5)

        response = client.post(f"/api/v1/workflows/batches/{submitted['batch_id']}/cancel")
        assert response.status_code == 200
        assert response.json()["cancel_requested"] is True

        workflow_trigger.release.set()
        _wait(client, BatchKind.WORKFLOW, submitted["batch_id"])
        batch = client.get(f"/api/v1/workflows/batches/{submitted['batch_id']}").json()
        assert batch["status"] == "cancelled"
        assert batch["success_count"] + batch["failed_count"] + batch["skipped_count"] == 4

        again = client.post(f"/api/v1/workflows/batches/{submitted['batch_id']}/cancel")
        assert again.status_code == 409

    def test_list_filters_by_workflow_key(self, make_client: ClientFactory) -> None:
        client = make_client(_tree(sourced_children=1))
        for key in ("summarize", "translate", "summarize"):
            submitted = _execute_workflow(client, 2, workflow_key=key, include_descendants=False)
            _wait(client, BatchKind.WORKFLOW, submitted["batch_id"])

        body = client.get("/api/v1/workflows/batches", params={"workflow_key": "summarize"}).json()
        assert body["total"] == 2
        assert {item["workflow_key"] for item in body["items"]} == {"summarize"}
        assert all("details" not in item for item in body["items"])


class TestSyncBatchEndpoints:
    """Sync batches over HTTP, using the shared document tree."""

    def test_preview_requires_sync_target_by_default(
        self, make_client: ClientFactory, directory: FakeDirectory
    ) -> None:
        client = make_client(directory)
        body = client.post("/api/v1/nodes/1/sync/batch/preview", json={}).json()

        assert (body["total"], body["can_execute"], body["will_skip"]) == (3, 1, 2)
        reasons = {item["target_id"]: item["skip_reason"] for item in body["items"]}
        assert reasons[21] is None
        assert reasons[31] == "sync_target not configured"
        assert reasons[41].startswith("invalid sync_target:")

    def test_preview_without_sync_target_rule(
        self, make_client: ClientFactory, directory: FakeDirectory
    ) -> None:
        client = make_client(directory)
        body = client.post(
            "/api/v1/nodes/1/sync/batch/preview",
            json={"require_sync_target": False, "skip_doc_types": "note"},
        ).json()
        assert (body["can_execute"], body["will_skip"]) == (2, 1)

    def test_execute_sync_batch(
        self, make_client: ClientFactory, directory: FakeDirectory, sync_trigger: FakeTrigger
    ) -> None:
        client = make_client(directory)
        response = client.post("/api/v1/nodes/1/sync/batch/execute", json={"concurrency": 2})
        assert response.status_code == 202
        batch_id = response.json()["batch_id"]
        _wait(client, BatchKind.SYNC, batch_id)

        batch = client.get(f"/api/v1/sync/batches/{batch_id}").json()
        assert batch["status"] == "completed"
        assert (batch["success_count"], batch["skipped_count"]) == (1, 2)
        assert batch["workflow_key"] is None
        assert sync_trigger.triggered == [21]

    def test_batch_of_other_kind_is_404(
        self, make_client: ClientFactory, directory: FakeDirectory
    ) -> None:
        client = make_client(directory)
        batch_id = client.post("/api/v1/nodes/1/sync/batch/execute", json={}).json()["batch_id"]
        _wait(client, BatchKind.SYNC, batch_id)

        assert client.get(f"/api/v1/workflows/batches/{batch_id}").status_code == 404
        assert client.post(f"/api/v1/workflows/batches/{batch_id}/cancel").status_code == 404

    def test_list_pagination(self, make_client: ClientFactory, directory: FakeDirectory) -> None:
        client = make_client(directory)
        for _ in range(3):
            batch_id = client.post(
                "/api/v1/nodes/2/sync/batch/execute", json={"include_descendants": False}
            ).json()["batch_id"]
            _wait(client, BatchKind.SYNC, batch_id)

        first = client.get("/api/v1/sync/batches", params={"limit": 2}).json()
        assert (len(first["items"]), first["total"], first["has_more"]) == (2, 3, True)
        rest = client.get("/api/v1/sync/batches", params={"limit": 2, "offset": 2}).json()
        assert (len(rest["items"]), rest["has_more"]) == (1, False)
        clamped = client.get("/api/v1/sync/batches", params={"limit": 1000}).json()
        assert clamped["limit"] == 100


class TestHealth:
    """Tests for the health endpoint and request logging middleware."""

    def test_liveness(self, make_client: ClientFactory) -> None:
        client = make_client(_tree(sourced_children=0))
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_request_id_echoed(self, make_client: ClientFactory) -> None:
        client = make_client(_tree(sourced_children=0))
        response = client.get("/api/v1/health", headers={"x-request-id": "req-42"})
        assert response.headers["x-request-id"] == "req-42"

    def test_deep_check_reports_degraded(
        self, make_client: ClientFactory, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(health, "check_directory_health", lambda *args, **kwargs: True)
        monkeypatch.setattr(health, "check_prefect_health", lambda *args, **kwargs: False)
        client = make_client(_tree(sourced_children=0))
        body = client.get("/api/v1/health", params={"deep": True}).json()
        assert body == {"status": "degraded", "checks": {"directory": True, "prefect": False}}
