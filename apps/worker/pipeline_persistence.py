"""
Persistence helpers for pipeline outputs.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from packages.db.database import get_session
from packages.db.models import ClinicalSummary as ClinicalSummaryORM
from packages.db.models import PatientFile as PatientFileORM
from packages.db.models import utcnow
from packages.shared.models import FileExtractionResult, FileRef, SanitizedSummary

logger = logging.getLogger(__name__)


def load_unprocessed_files(appointment_id: str) -> list[FileRef]:
    """Files linked to the appointment that still need extraction, oldest first."""
    with get_session() as session:
        rows = (
            session.query(PatientFileORM)
            .filter(PatientFileORM.appointment_id == appointment_id)
            .filter(or_(PatientFileORM.processed.is_(None), PatientFileORM.processed.is_(False)))
            .filter(PatientFileORM.extraction_failed.isnot(True))
            .order_by(PatientFileORM.created_at, PatientFileORM.id)
            .all()
        )
        return [
            FileRef(
                file_id=r.id,
                file_name=r.file_name,
                file_path=r.file_path,
                file_type=r.file_type,
                file_size=r.file_size,
            )
            for r in rows
        ]


def persist_file_result(result: FileExtractionResult) -> None:
    with get_session() as session:
        row = session.query(PatientFileORM).filter_by(id=result.file_id).first()
        if not row:
            logger.warning(f"File {result.file_id} disappeared before its result could be stored")
            return
        if result.succeeded:
            row.extracted_text = result.extracted_text
            row.processed = True
            row.extraction_error = None
            row.extraction_failed = False
        else:
            row.processed = False
            row.extraction_error = result.error_message
            row.extraction_failed = result.terminal
        row.updated_at = utcnow()


@dataclass(frozen=True)
class StoredSummary:
    summary_id: str
    created: bool
    fallback_reason: str | None


def _existing_summary(session, consultation_id: str) -> ClinicalSummaryORM | None:
    return session.query(ClinicalSummaryORM).filter_by(consultation_id=consultation_id).first()


def store_clinical_summary(
    *,
    consultation_id: str,
    patient_id: str,
    appointment_id: str,
    summary: SanitizedSummary,
) -> StoredSummary:
    """
    Insert the summary for a consultation once. An existing row (including
    one inserted concurrently by another worker) is kept as-is.
    """
    with get_session() as session:
        existing = _existing_summary(session, consultation_id)
        if existing:
            logger.info(f"[{appointment_id}] Clinical summary already stored for consultation {consultation_id}")
            return StoredSummary(existing.id, created=False, fallback_reason=existing.fallback_reason)

    fallback = summary.fallback_reason.value if summary.fallback_reason else None
    try:
        with get_session() as session:
            row = ClinicalSummaryORM(
                consultation_id=consultation_id,
                patient_id=patient_id,
                appointment_id=appointment_id,
                summary_json=summary.payload.model_dump(mode="json"),
                processing_status="completed",
                fallback_reason=fallback,
            )
            session.add(row)
            session.flush()
            summary_id = row.id
    except IntegrityError:
        with get_session() as session:
            existing = _existing_summary(session, consultation_id)
            if not existing:
                raise
            logger.info(f"[{appointment_id}] Lost summary insert race for consultation {consultation_id}; keeping existing row")
            return StoredSummary(existing.id, created=False, fallback_reason=existing.fallback_reason)

    logger.info(f"[{appointment_id}] Clinical summary stored ({summary_id})")
    return StoredSummary(summary_id, created=True, fallback_reason=fallback)
