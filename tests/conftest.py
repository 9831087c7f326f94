"""
Shared pytest fixtures.

DATABASE_URL must point at a throwaway SQLite file before any application
module is imported, because the engine is created at import time.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path

_TEST_DB_DIR = tempfile.mkdtemp(prefix="intake_pipeline_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_TEST_DB_DIR) / 'test_intake.db'}"
os.environ.setdefault("DATA_DIR", _TEST_DB_DIR)

import pytest

from packages.db.database import engine
from packages.db.models import Base
from packages.shared.config import PipelineSettings
from packages.shared.storage import LocalBlobStore
from tests.helpers import FakeGeminiClient, Seeder


@pytest.fixture(autouse=True)
def setup_db():
    """Create fresh tables for each test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def storage_root(tmp_path) -> Path:
    root = tmp_path / "blobs"
    root.mkdir()
    return root


@pytest.fixture
def settings(storage_root) -> PipelineSettings:
    return PipelineSettings(
        gemini_api_key="test-key",
        file_poll_interval_seconds=0.0,
        file_poll_timeout_seconds=1.0,
        summary_retry_base_seconds=0.0,
        storage_backend="local",
        data_dir=storage_root,
    )


@pytest.fixture
def fake_ai() -> FakeGeminiClient:
    return FakeGeminiClient()


@pytest.fixture
def blob_store(storage_root) -> LocalBlobStore:
    return LocalBlobStore(storage_root)


@pytest.fixture
def seed(blob_store) -> Seeder:
    return Seeder(blob_store)
