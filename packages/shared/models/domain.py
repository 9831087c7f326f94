from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, Field

from .enums import FallbackReason, FileKind, UrgencyLevel


class FileRef(BaseModel):
    """Snapshot of a patient_files row handed to the extractors."""
    file_id: str
    file_name: str
    file_path: str
    file_type: str
    file_size: Optional[int] = None


class FileExtractionResult(BaseModel):
    file_id: str
    file_name: str
    file_type: str
    kind: FileKind
    status: str  # completed | failed
    extracted_text: str = ""
    error_message: Optional[str] = None
    terminal: bool = False
    processing_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"


class PatientProfile(BaseModel):
    age: Optional[int] = None
    gender: Optional[str] = None
    family_history: Optional[str] = None
    smoking_status: Optional[str] = None
    tobacco_use: Optional[str] = None
    allergies: Optional[list[str] | str] = None
    alcohol_consumption: Optional[str] = None
    exercise_frequency: Optional[str] = None
    bmi: Optional[float] = None


class ExtractedFile(BaseModel):
    file_name: str
    file_type: str
    text: Optional[str] = None  # None when extraction failed


class ClinicalContext(BaseModel):
    appointment_id: str
    consultation_id: str
    patient_id: str
    form_data: dict[str, Any] = Field(default_factory=dict)
    voice_data: Optional[dict[str, Any]] = None
    profile: PatientProfile = Field(default_factory=PatientProfile)
    files: list[ExtractedFile] = Field(default_factory=list)

    @property
    def has_form_data(self) -> bool:
        return bool(self.form_data)

    @property
    def has_voice_data(self) -> bool:
        return bool(self.voice_data)

    @property
    def has_file_text(self) -> bool:
        return any(f.text and f.text.strip() for f in self.files)


class ClinicalSummaryPayload(BaseModel):
    chief_complaint: str
    history_of_present_illness: str
    differential_diagnoses: list[str] = Field(default_factory=list)
    recommended_tests: list[str] = Field(default_factory=list)
    urgency_level: UrgencyLevel = UrgencyLevel.ROUTINE


class SanitizedSummary(BaseModel):
    payload: ClinicalSummaryPayload
    fallback_reason: Optional[FallbackReason] = None

    @property
    def is_fallback(self) -> bool:
        return self.fallback_reason is not None


class StageResult(BaseModel):
    """Structured reply of every pipeline entry point."""
    status_code: int = 200
    success: bool = True
    message: Optional[str] = None
    error: Optional[str] = None
    appointment_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success}
        if self.message is not None:
            body["message"] = self.message
        if self.error is not None:
            body["error"] = self.error
        if self.appointment_id is not None:
            body["appointment_id"] = self.appointment_id
        body.update(self.details)
        return body


def compute_age(date_of_birth: Optional[date], today: date) -> Optional[int]:
    if date_of_birth is None:
        return None
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age
