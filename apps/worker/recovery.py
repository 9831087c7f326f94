"""
Manual recovery for appointments stuck in an intermediate status.

These operations are operator overrides: they force the status instead of
going through the transition table, then re-enter the normal stage code, so
the lock and claim still decide whether any work actually runs.
"""
from __future__ import annotations

import functools
import logging
from typing import Any, Optional

from apps.worker.completion import check_files_settled
from apps.worker.document_processor import process_appointment_files
from apps.worker.pipeline import run_summary_pipeline
from packages.db.database import get_session
from packages.db.models import Appointment, ClinicalSummary, PatientFile, utcnow
from packages.db.status import force_status
from packages.shared.config import PipelineSettings
from packages.shared.errors import MissingInputError
from packages.shared.gemini import GeminiClient
from packages.shared.models import ProcessingStatus, StageResult
from packages.shared.storage import BlobStore, build_blob_store

logger = logging.getLogger(__name__)


def _require_appointment(appointment_id: str) -> Appointment:
    with get_session() as session:
        appointment = session.query(Appointment).filter_by(id=appointment_id).first()
        if not appointment:
            raise MissingInputError(f"Appointment {appointment_id} not found")
        return appointment


def reset_failed_files(appointment_id: str) -> int:
    """Clear terminal per-file failures so the files are attempted again."""
    with get_session() as session:
        count = (
            session.query(PatientFile)
            .filter(PatientFile.appointment_id == appointment_id)
            .filter(PatientFile.extraction_failed.is_(True))
            .update(
                {"extraction_failed": False, "extraction_error": None, "updated_at": utcnow()},
                synchronize_session=False,
            )
        )
    if count:
        logger.info(f"[{appointment_id}] Reset {count} permanently failed file(s)")
    return count


def retrigger_file_processing(
    appointment_id: str,
    reset_failed: bool = False,
    *,
    settings: Optional[PipelineSettings] = None,
    client: Optional[GeminiClient] = None,
    storage: Optional[BlobStore] = None,
) -> StageResult:
    _require_appointment(appointment_id)
    settings = settings or PipelineSettings.from_env()
    client = client or GeminiClient.from_settings(settings)
    storage = storage or build_blob_store(settings)

    reset = reset_failed_files(appointment_id) if reset_failed else 0
    force_status(appointment_id, ProcessingStatus.TRIGGERED, reason="manual file processing re-trigger")

    result = process_appointment_files(
        appointment_id,
        settings=settings,
        client=client,
        storage=storage,
        summary_runner=functools.partial(
            run_summary_pipeline, settings=settings, client=client, source="manual_retrigger"
        ),
    )
    result.details["reset_failed_files"] = reset
    return result


def retrigger_summary(
    appointment_id: str,
    force: bool = False,
    *,
    settings: Optional[PipelineSettings] = None,
    client: Optional[GeminiClient] = None,
) -> StageResult:
    appointment = _require_appointment(appointment_id)
    settings = settings or PipelineSettings.from_env()
    client = client or GeminiClient.from_settings(settings)

    deleted = 0
    if force and appointment.consultation_id:
        with get_session() as session:
            deleted = (
                session.query(ClinicalSummary)
                .filter(ClinicalSummary.consultation_id == appointment.consultation_id)
                .delete(synchronize_session=False)
            )
        if deleted:
            logger.warning(f"[{appointment_id}] Deleted existing clinical summary for regeneration")

    force_status(appointment_id, ProcessingStatus.READY_FOR_SUMMARY, reason="manual summary re-trigger")
    result = run_summary_pipeline(appointment_id, settings=settings, client=client, source="manual_retrigger")
    result.details["deleted_existing_summary"] = bool(deleted)
    return result


def appointment_diagnostics(appointment_id: str) -> dict[str, Any]:
    appointment = _require_appointment(appointment_id)
    completion = check_files_settled(appointment_id)

    summary_info: dict[str, Any] = {"exists": False}
    if appointment.consultation_id:
        with get_session() as session:
            summary = (
                session.query(ClinicalSummary)
                .filter_by(consultation_id=appointment.consultation_id)
                .first()
            )
            if summary:
                summary_info = {
                    "exists": True,
                    "summary_id": summary.id,
                    "is_fallback": summary.fallback_reason is not None,
                    "fallback_reason": summary.fallback_reason,
                    "created_at": summary.created_at.isoformat() if summary.created_at else None,
                }

    return {
        "appointment_id": appointment.id,
        "consultation_id": appointment.consultation_id,
        "patient_id": appointment.patient_id,
        "processing_status": appointment.processing_status,
        "error_message": appointment.error_message,
        "files": {
            "total": completion.total,
            "processed": completion.processed,
            "failed_permanently": completion.failed_terminally,
            "remaining": completion.remaining,
            "all_settled": completion.all_settled,
        },
        "clinical_summary": summary_info,
    }
