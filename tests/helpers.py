"""
Test doubles and row builders shared by the unit and integration suites.
"""
from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import date

from packages.db.database import get_session
from packages.db.models import Appointment, ClinicalSummary, Consultation, Patient, PatientFile
from packages.shared.errors import FileNotReadyError
from packages.shared.gemini import SUMMARY_CONFIG, UploadedFile
from packages.shared.storage import LocalBlobStore

CHEST_PAIN_SUMMARY = {
    "chief_complaint": "Chest pain",
    "history_of_present_illness": "Two days of substernal chest pain radiating to the left arm, worse on exertion.",
    "differential_diagnoses": ["Acute coronary syndrome", "Stable angina", "Musculoskeletal chest pain"],
    "recommended_tests": ["ECG", "Troponin", "Chest X-ray"],
    "urgency_level": "urgent",
}


class FakeGeminiClient:
    """Stands in for GeminiClient; records every call."""

    def __init__(self, summary_responses=None, document_text="CBC: hemoglobin 13.2 g/dL", image_text="Chest radiograph, PA view"):
        self.summary_responses = list(summary_responses or [])
        self.document_text = document_text
        self.image_text = image_text
        self.document_error: Exception | None = None
        self.image_error: Exception | None = None
        self.not_ready = False
        self.uploads: list[str] = []
        self.deleted: list[str] = []
        self.summary_prompts: list[str] = []
        self.extraction_calls: list[list[dict]] = []

    @contextmanager
    def uploaded_file(self, data, mime_type, display_name):
        name = f"files/{len(self.uploads) + 1}"
        self.uploads.append(display_name)
        try:
            yield UploadedFile(name=name, uri=f"https://example.test/{name}", mime_type=mime_type, state="PROCESSING")
        finally:
            self.deleted.append(name)

    def wait_until_active(self, uploaded, *, interval, timeout):
        if self.not_ready:
            raise FileNotReadyError("File processing failed. State: PROCESSING")
        return UploadedFile(name=uploaded.name, uri=uploaded.uri, mime_type=uploaded.mime_type, state="ACTIVE")

    def generate_content(self, parts, config):
        if config == SUMMARY_CONFIG:
            self.summary_prompts.append(parts[0]["text"])
            if self.summary_responses:
                response = self.summary_responses.pop(0)
            else:
                response = json.dumps(CHEST_PAIN_SUMMARY)
            if isinstance(response, Exception):
                raise response
            return response

        self.extraction_calls.append(parts)
        if any("inlineData" in p for p in parts):
            if self.image_error is not None:
                raise self.image_error
            return self.image_text
        if self.document_error is not None:
            raise self.document_error
        return self.document_text


class Seeder:
    """Writes intake rows the way the intake flow would."""

    def __init__(self, store: LocalBlobStore):
        self.store = store

    def patient(self, **fields) -> str:
        values = {
            "full_name": "Jordan Rivera",
            "gender": "female",
            "date_of_birth": date(1970, 6, 15),
            "smoking_status": "former",
            "allergies": ["penicillin"],
        }
        values.update(fields)
        with get_session() as session:
            row = Patient(**values)
            session.add(row)
            session.flush()
            return row.id

    def consultation(self, patient_id: str, form_data=None, voice_data=None) -> str:
        with get_session() as session:
            row = Consultation(patient_id=patient_id, form_data=form_data, voice_data=voice_data)
            session.add(row)
            session.flush()
            return row.id

    def appointment(self, consultation_id=None, patient_id=None, status="pending") -> str:
        with get_session() as session:
            row = Appointment(consultation_id=consultation_id, patient_id=patient_id, processing_status=status)
            session.add(row)
            session.flush()
            return row.id

    def file(self, consultation_id: str, appointment_id=None, name="labs.pdf", file_type="application/pdf",
             data=b"%PDF-1.4 test", **fields) -> str:
        path = f"{consultation_id}/{name}"
        if data is not None:
            self.store.save(path, data)
        with get_session() as session:
            row = PatientFile(
                consultation_id=consultation_id,
                appointment_id=appointment_id,
                file_name=name,
                file_path=path,
                file_type=file_type,
                file_size=len(data) if data is not None else None,
                **fields,
            )
            session.add(row)
            session.flush()
            return row.id

    def intake(self, form_data=None, voice_data=None, status="pending", **patient_fields) -> dict:
        """Patient, consultation and linked appointment in one go."""
        if form_data is None:
            form_data = {
                "chiefComplaint": "Chest pain",
                "symptomDuration": "2 days",
                "severityLevel": "7/10",
                "symptoms": "Pressure radiating to the left arm",
            }
        patient_id = self.patient(**patient_fields)
        consultation_id = self.consultation(patient_id, form_data=form_data, voice_data=voice_data)
        appointment_id = self.appointment(consultation_id, patient_id, status=status)
        return {"patient_id": patient_id, "consultation_id": consultation_id, "appointment_id": appointment_id}


def appointment_row(appointment_id: str) -> Appointment:
    with get_session() as session:
        return session.query(Appointment).filter_by(id=appointment_id).one()


def file_row(file_id: str) -> PatientFile:
    with get_session() as session:
        return session.query(PatientFile).filter_by(id=file_id).one()


def summaries_for(consultation_id: str) -> list[ClinicalSummary]:
    with get_session() as session:
        return session.query(ClinicalSummary).filter_by(consultation_id=consultation_id).all()
