"""Shared test fixtures for the batch orchestrator."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from src.domains.batch.repositories.batch_repository import BatchRepository
from src.models.config import Config
from src.services.database import Database
from tests.fakes import FakeDirectory, FakeTrigger

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> str:
    """Provide a temporary database file path."""
    return str(tmp_path / "test.db")


@pytest.fixture
def db(tmp_db_path: str) -> Database:
    """Provide an initialized temporary database."""
    database = Database(db_path=tmp_db_path)
    database.init_db()
    return database


@pytest.fixture
def repository(db: Database) -> BatchRepository:
    return BatchRepository(db)


@pytest.fixture
def config(tmp_db_path: str) -> Config:
    """Configuration pointing at unreachable services and a temp database."""
    return Config(
        directory_base_url="http://directory.test",
        prefect_base_url="http://prefect.test",
        database_path=tmp_db_path,
        job_poll_interval_seconds=0.01,
    )


@pytest.fixture
def directory() -> FakeDirectory:
    """A small tree.

    /Root (1)                 no sources, no documents
      /Root/Alpha (2)         source 20 (brief), output 21 (report, valid sync_target)
        /Root/Alpha/Gamma (4) no sources, output 41 (report, malformed sync_target)
      /Root/Beta draft (3)    source 30 (brief), output 31 (note, no sync_target)
      /Root/Gone (5)          deleted
    """
    fake = FakeDirectory()
    fake.add_node(1, "Root")
    fake.add_node(2, "Alpha", parent_id=1)
    fake.add_node(3, "Beta draft", parent_id=1)
    fake.add_node(4, "Gamma", parent_id=2)
    fake.add_node(5, "Gone", parent_id=1, deleted_at="2026-01-01T00:00:00Z")

    fake.add_document(2, 20, "brief", source=True)
    fake.add_document(2, 21, "report", metadata={"sync_target": {"record_id": 7, "table": "reports"}})
    fake.add_document(3, 30, "brief", source=True)
    fake.add_document(3, 31, "note")
    fake.add_document(4, 41, "report", metadata={"sync_target": "not json"})
    return fake


@pytest.fixture
def trigger() -> FakeTrigger:
    return FakeTrigger()
