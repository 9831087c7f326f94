"""
Completion detection for an appointment's file extraction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func

from packages.db.database import get_session
from packages.db.models import PatientFile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileCompletion:
    total: int
    processed: int
    failed_terminally: int

    @property
    def remaining(self) -> int:
        return self.total - self.processed - self.failed_terminally

    @property
    def all_settled(self) -> bool:
        """No files at all, or every file is either processed or permanently failed."""
        return self.total == 0 or self.remaining <= 0


def check_files_settled(appointment_id: str) -> FileCompletion:
    """Count the appointment's files in a fresh session, after the batch writes committed."""
    with get_session() as session:
        base = session.query(func.count(PatientFile.id)).filter(PatientFile.appointment_id == appointment_id)
        total = base.scalar() or 0
        processed = base.filter(PatientFile.processed.is_(True)).scalar() or 0
        failed = (
            base.filter(PatientFile.processed.isnot(True))
            .filter(PatientFile.extraction_failed.is_(True))
            .scalar()
            or 0
        )

    completion = FileCompletion(total=total, processed=processed, failed_terminally=failed)
    logger.info(
        f"[{appointment_id}] Files status: {processed}/{total} processed, "
        f"{failed} failed permanently, all settled: {completion.all_settled}"
    )
    return completion
