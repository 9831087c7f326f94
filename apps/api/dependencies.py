"""
Shared FastAPI dependencies for the pipeline routes.

Tests replace these through `app.dependency_overrides` to inject fake AI
clients and blob stores.
"""
from __future__ import annotations

from packages.shared.config import PipelineSettings
from packages.shared.gemini import GeminiClient
from packages.shared.storage import BlobStore, build_blob_store


def get_settings() -> PipelineSettings:
    return PipelineSettings.from_env()


def get_ai_client() -> GeminiClient:
    return GeminiClient.from_settings(get_settings())


def get_blob_store() -> BlobStore:
    return build_blob_store(get_settings())
