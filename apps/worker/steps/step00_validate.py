"""
Step 0: Input validation.
The appointment must reference a consultation and a patient, and the
collected context must hold at least one source of clinical information.
"""
from __future__ import annotations

from dataclasses import dataclass

from packages.db.database import get_session
from packages.db.models import Appointment, Consultation, Patient
from packages.shared.errors import InsufficientDataError, MissingInputError
from packages.shared.models import ClinicalContext


@dataclass(frozen=True)
class Linkage:
    appointment_id: str
    consultation_id: str
    patient_id: str


def validate_linkage(appointment_id: str) -> Linkage:
    with get_session() as session:
        appointment = session.query(Appointment).filter_by(id=appointment_id).first()
        if not appointment:
            raise MissingInputError(f"Appointment {appointment_id} not found")
        if not appointment.consultation_id or not appointment.patient_id:
            raise MissingInputError("Missing consultation_id or patient_id")
        if not session.query(Consultation.id).filter_by(id=appointment.consultation_id).first():
            raise MissingInputError(f"Consultation {appointment.consultation_id} not found")
        if not session.query(Patient.id).filter_by(id=appointment.patient_id).first():
            raise MissingInputError(f"Patient {appointment.patient_id} not found")
        return Linkage(
            appointment_id=appointment.id,
            consultation_id=appointment.consultation_id,
            patient_id=appointment.patient_id,
        )


def check_sufficiency(context: ClinicalContext) -> None:
    if not (context.has_form_data or context.has_voice_data or context.has_file_text):
        raise InsufficientDataError("Insufficient data for clinical summary generation")
