"""
Step 1: Collect clinical context.
Consultation answers, patient profile and the outcome of every file
extraction attempted for the consultation.
"""
from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import or_

from apps.worker.steps.step00_validate import Linkage
from packages.db.database import get_session
from packages.db.models import Consultation, Patient, PatientFile
from packages.shared.models import ClinicalContext, ExtractedFile, PatientProfile, compute_age

logger = logging.getLogger(__name__)


def _profile(patient: Patient, today: date) -> PatientProfile:
    return PatientProfile(
        age=compute_age(patient.date_of_birth, today),
        gender=patient.gender,
        family_history=patient.family_history,
        smoking_status=patient.smoking_status,
        tobacco_use=patient.tobacco_use,
        allergies=patient.allergies,
        alcohol_consumption=patient.alcohol_consumption,
        exercise_frequency=patient.exercise_frequency,
        bmi=patient.bmi,
    )


def collect_context(linkage: Linkage, today: date | None = None) -> ClinicalContext:
    today = today or date.today()
    with get_session() as session:
        consultation = session.query(Consultation).filter_by(id=linkage.consultation_id).one()
        patient = session.query(Patient).filter_by(id=linkage.patient_id).one()
        file_rows = (
            session.query(PatientFile)
            .filter(PatientFile.consultation_id == linkage.consultation_id)
            .filter(or_(PatientFile.processed.is_(True), PatientFile.extraction_failed.is_(True)))
            .order_by(PatientFile.created_at, PatientFile.id)
            .all()
        )

        files = [
            ExtractedFile(
                file_name=f.file_name,
                file_type=f.file_type,
                text=f.extracted_text if f.processed and f.extracted_text and f.extracted_text.strip() else None,
            )
            for f in file_rows
        ]
        form_data = consultation.form_data if isinstance(consultation.form_data, dict) else {}
        voice_data = consultation.voice_data if isinstance(consultation.voice_data, dict) else None
        context = ClinicalContext(
            appointment_id=linkage.appointment_id,
            consultation_id=linkage.consultation_id,
            patient_id=linkage.patient_id,
            form_data=form_data,
            voice_data=voice_data,
            profile=_profile(patient, today),
            files=files,
        )

    logger.info(
        f"[{linkage.appointment_id}] Context collected: form_data={context.has_form_data}, "
        f"voice_data={context.has_voice_data}, files={len(files)} "
        f"({sum(1 for f in files if f.text)} with text)"
    )
    return context
