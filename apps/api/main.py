"""
Clinical intake pipeline API - FastAPI application entry point.
"""
from __future__ import annotations

import logging
import os
import sys
import time
import uuid

# Add project root to path
sys.path.append(os.getcwd())

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from apps.api.authz import validate_auth_runtime
from packages.db.database import init_db
from packages.shared.config import PipelineSettings


def _parse_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("intake")

app = FastAPI(
    title="Clinical Intake Pipeline API",
    description="Document extraction and clinical summary generation for intake appointments",
    version="0.1.0",
)

# Security/runtime settings
audit_logging_enabled = _parse_bool_env("AUDIT_LOGGING", True)
max_request_bytes = int(os.getenv("MAX_REQUEST_BYTES", str(1024 * 1024)))
security_headers_enabled = _parse_bool_env("SECURITY_HEADERS_ENABLED", True)


def _validate_runtime() -> None:
    """Fail fast on unusable configuration."""
    validate_auth_runtime()
    settings = PipelineSettings.from_env()
    if settings.storage_backend not in {"local", "supabase"}:
        raise RuntimeError("STORAGE_BACKEND must be one of: local, supabase.")
    if settings.storage_backend == "supabase" and not (settings.storage_url and settings.storage_service_key):
        raise RuntimeError("STORAGE_BACKEND=supabase requires STORAGE_URL and STORAGE_SERVICE_KEY.")
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY is not set; AI calls will fail until it is configured")


@app.middleware("http")
async def request_security_and_audit_middleware(request: Request, call_next):
    started = time.perf_counter()
    request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex

    if request.url.path != "/health":
        content_length = request.headers.get("Content-Length")
        if content_length:
            try:
                if int(content_length) > max_request_bytes:
                    return JSONResponse(
                        status_code=413,
                        content={"success": False, "error": "Request entity too large"},
                        headers={"X-Request-Id": request_id},
                    )
            except ValueError:
                pass

    response = await call_next(request)
    response.headers["X-Request-Id"] = request_id

    if security_headers_enabled:
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")

    if audit_logging_enabled:
        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "request_audit request_id=%s method=%s path=%s status=%s duration_ms=%s",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )

    return response


@app.on_event("startup")
def startup():
    """Initialize database tables on startup."""
    _validate_runtime()
    logger.info("Initializing database...")
    init_db()
    logger.info("Database initialized")


# Register routes
from apps.api.routes.appointments import router as appointments_router  # noqa: E402
from apps.api.routes.events import router as events_router  # noqa: E402

app.include_router(events_router)
app.include_router(appointments_router)


@app.get("/health")
def health():
    return {"status": "ok", "version": "0.1.0"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("apps.api.main:app", host="0.0.0.0", port=8000, reload=True)
