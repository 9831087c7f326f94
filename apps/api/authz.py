"""
Feature-flagged shared-secret guard for the ingress and admin routes.

Default behavior is permissive for local development. When
`API_INTERNAL_TOKEN` is set, every guarded request must carry it in the
`X-Internal-Token` header. Set `AUTH_ENFORCEMENT=true` to refuse to start
without a token.
"""
from __future__ import annotations

import hmac
import os

from fastapi import Header, HTTPException

MIN_TOKEN_CHARS = 24


def _env_true(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def auth_enforcement_enabled() -> bool:
    return _env_true("AUTH_ENFORCEMENT", False)


def _expected_token() -> str:
    return os.getenv("API_INTERNAL_TOKEN", "").strip()


def validate_auth_runtime() -> None:
    """Fail fast on a missing or weak token when enforcement is enabled."""
    if not auth_enforcement_enabled():
        return
    if len(_expected_token()) < MIN_TOKEN_CHARS:
        raise RuntimeError(
            f"AUTH_ENFORCEMENT=true requires API_INTERNAL_TOKEN >= {MIN_TOKEN_CHARS} chars."
        )


def require_internal_token(
    x_internal_token: str | None = Header(default=None, alias="X-Internal-Token"),
) -> None:
    expected = _expected_token()
    if not expected:
        if auth_enforcement_enabled():
            raise HTTPException(
                status_code=500,
                detail="API is misconfigured: API_INTERNAL_TOKEN must be set when AUTH_ENFORCEMENT=true",
            )
        return
    if not x_internal_token or not hmac.compare_digest(x_internal_token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid internal token")
