"""
API route: Appointment recovery and diagnostics
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from apps.api.authz import require_internal_token
from apps.api.dependencies import get_ai_client, get_blob_store, get_settings
from apps.worker.recovery import appointment_diagnostics, retrigger_file_processing, retrigger_summary
from packages.shared.config import PipelineSettings
from packages.shared.errors import MissingInputError
from packages.shared.gemini import GeminiClient
from packages.shared.storage import BlobStore

router = APIRouter(prefix="/appointments", tags=["appointments"], dependencies=[Depends(require_internal_token)])


class RetriggerFilesRequest(BaseModel):
    reset_failed_files: bool = False


class RetriggerSummaryRequest(BaseModel):
    force: bool = False


@router.post("/{appointment_id}/retrigger/files")
def retrigger_files(
    appointment_id: str,
    req: RetriggerFilesRequest = RetriggerFilesRequest(),
    settings: PipelineSettings = Depends(get_settings),
    client: GeminiClient = Depends(get_ai_client),
    storage: BlobStore = Depends(get_blob_store),
):
    """Force an appointment back to triggered and run file processing."""
    try:
        result = retrigger_file_processing(
            appointment_id,
            reset_failed=req.reset_failed_files,
            settings=settings,
            client=client,
            storage=storage,
        )
    except MissingInputError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    return JSONResponse(status_code=result.status_code, content=result.to_body())


@router.post("/{appointment_id}/retrigger/summary")
def retrigger_clinical_summary(
    appointment_id: str,
    req: RetriggerSummaryRequest = RetriggerSummaryRequest(),
    settings: PipelineSettings = Depends(get_settings),
    client: GeminiClient = Depends(get_ai_client),
):
    """Force an appointment to ready_for_summary and run summary generation."""
    try:
        result = retrigger_summary(appointment_id, force=req.force, settings=settings, client=client)
    except MissingInputError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    return JSONResponse(status_code=result.status_code, content=result.to_body())


@router.get("/{appointment_id}/pipeline")
def get_pipeline_state(appointment_id: str):
    try:
        return appointment_diagnostics(appointment_id)
    except MissingInputError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
