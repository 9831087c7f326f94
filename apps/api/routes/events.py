"""
API route: Pipeline event ingress
"""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from apps.api.authz import require_internal_token
from apps.api.dependencies import get_ai_client, get_blob_store, get_settings
from apps.worker.dispatch import handle_file_processing_event, handle_summary_event
from packages.shared.config import PipelineSettings
from packages.shared.gemini import GeminiClient
from packages.shared.models import StageResult
from packages.shared.storage import BlobStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"], dependencies=[Depends(require_internal_token)])


async def _json_body(request: Request):
    raw = await request.body()
    try:
        return json.loads(raw or b"")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _respond(result: StageResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.to_body())


def _bad_request(message: str) -> JSONResponse:
    return _respond(StageResult(status_code=400, success=False, error=message))


@router.post("/process-files")
async def process_files(
    request: Request,
    settings: PipelineSettings = Depends(get_settings),
    client: GeminiClient = Depends(get_ai_client),
    storage: BlobStore = Depends(get_blob_store),
):
    """Stage 1 trigger: extract text from an appointment's uploaded files."""
    payload = await _json_body(request)
    if not isinstance(payload, dict):
        return _bad_request("Request body must be a JSON object")
    result = await run_in_threadpool(
        handle_file_processing_event, payload, settings=settings, client=client, storage=storage
    )
    return _respond(result)


@router.post("/generate-summary")
async def generate_summary(
    request: Request,
    settings: PipelineSettings = Depends(get_settings),
    client: GeminiClient = Depends(get_ai_client),
):
    """Stage 2 trigger: generate the clinical summary for an appointment."""
    payload = await _json_body(request)
    if not isinstance(payload, dict):
        return _bad_request("Request body must be a JSON object")
    result = await run_in_threadpool(handle_summary_event, payload, settings=settings, client=client)
    return _respond(result)
