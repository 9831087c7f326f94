"""
Runtime settings for the pipeline, read from the environment.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}; using default {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}: {raw!r}; using default {default}")
        return default


def env_true(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class PipelineSettings:
    gemini_api_key: str = ""
    gemini_api_base_url: str = "https://generativelanguage.googleapis.com"
    gemini_model: str = "gemini-2.0-flash-exp"
    ai_request_timeout_seconds: float = 90.0

    max_file_bytes: int = 10 * 1024 * 1024
    signed_url_ttl_seconds: int = 300
    file_poll_interval_seconds: float = 2.0
    file_poll_timeout_seconds: float = 60.0

    summary_max_attempts: int = 3
    summary_retry_base_seconds: float = 1.0
    summary_settle_seconds: float = 0.0

    storage_backend: str = "local"
    data_dir: Path = Path("./data")
    storage_url: str = ""
    storage_service_key: str = ""
    storage_bucket: str = "patient-documents"

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            gemini_api_key=_env_str("GEMINI_API_KEY"),
            gemini_api_base_url=_env_str("GEMINI_API_BASE_URL", cls.gemini_api_base_url).rstrip("/"),
            gemini_model=_env_str("GEMINI_MODEL", cls.gemini_model),
            ai_request_timeout_seconds=_env_float("AI_REQUEST_TIMEOUT_SECONDS", cls.ai_request_timeout_seconds),
            max_file_bytes=_env_int("MAX_FILE_BYTES", cls.max_file_bytes),
            signed_url_ttl_seconds=_env_int("SIGNED_URL_TTL_SECONDS", cls.signed_url_ttl_seconds),
            file_poll_interval_seconds=_env_float("FILE_POLL_INTERVAL_SECONDS", cls.file_poll_interval_seconds),
            file_poll_timeout_seconds=_env_float("FILE_POLL_TIMEOUT_SECONDS", cls.file_poll_timeout_seconds),
            summary_max_attempts=_env_int("SUMMARY_MAX_ATTEMPTS", cls.summary_max_attempts),
            summary_retry_base_seconds=_env_float("SUMMARY_RETRY_BASE_SECONDS", cls.summary_retry_base_seconds),
            summary_settle_seconds=_env_float("SUMMARY_SETTLE_SECONDS", cls.summary_settle_seconds),
            storage_backend=_env_str("STORAGE_BACKEND", cls.storage_backend).lower(),
            data_dir=Path(_env_str("DATA_DIR", "./data")),
            storage_url=_env_str("STORAGE_URL").rstrip("/"),
            storage_service_key=_env_str("STORAGE_SERVICE_KEY"),
            storage_bucket=_env_str("STORAGE_BUCKET", cls.storage_bucket),
        )
