"""
SQLAlchemy ORM models for the intake pipeline.

Patients and consultations are written by the intake flow and only read here.
Appointments, patient files and clinical summaries carry the pipeline state.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone as dt_timezone

from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String, Text, JSON
from sqlalchemy.orm import DeclarativeBase, relationship

from packages.shared.models.enums import ProcessingStatus


def _uuid():
    return uuid.uuid4().hex


def utcnow():
    return datetime.now(dt_timezone.utc)


class Base(DeclarativeBase):
    pass


class Patient(Base):
    __tablename__ = "patients"

    id = Column(String(120), primary_key=True, default=_uuid)
    full_name = Column(String(200), nullable=True)
    gender = Column(String(50), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    family_history = Column(Text, nullable=True)
    smoking_status = Column(String(100), nullable=True)
    tobacco_use = Column(String(100), nullable=True)
    allergies = Column(JSON, nullable=True)
    alcohol_consumption = Column(String(100), nullable=True)
    exercise_frequency = Column(String(100), nullable=True)
    bmi = Column(Float, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    consultations = relationship("Consultation", back_populates="patient")


class Consultation(Base):
    __tablename__ = "consultations"

    id = Column(String(120), primary_key=True, default=_uuid)
    patient_id = Column(String(120), ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(String(120), nullable=True)
    form_data = Column(JSON, nullable=True)
    voice_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    patient = relationship("Patient", back_populates="consultations")
    files = relationship("PatientFile", back_populates="consultation")


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(120), primary_key=True, default=_uuid)
    consultation_id = Column(String(120), ForeignKey("consultations.id"), nullable=True)
    patient_id = Column(String(120), ForeignKey("patients.id"), nullable=True)
    doctor_id = Column(String(120), nullable=True)
    appointment_date = Column(String(20), nullable=True)
    appointment_time = Column(String(20), nullable=True)
    # pending | triggered | processing | processing_failed | ready_for_summary | completed | failed
    processing_status = Column(String(30), nullable=False, default=ProcessingStatus.PENDING.value)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    consultation = relationship("Consultation")
    files = relationship("PatientFile", back_populates="appointment")


class PatientFile(Base):
    __tablename__ = "patient_files"

    id = Column(String(120), primary_key=True, default=_uuid)
    consultation_id = Column(String(120), ForeignKey("consultations.id"), nullable=False)
    appointment_id = Column(String(120), ForeignKey("appointments.id"), nullable=True)
    file_name = Column(String(255), nullable=False)
    file_path = Column(String(500), nullable=False)
    file_type = Column(String(100), nullable=False)
    file_size = Column(Integer, nullable=True)
    processed = Column(Boolean, nullable=True, default=False)
    extracted_text = Column(Text, nullable=True)
    extraction_error = Column(Text, nullable=True)
    extraction_failed = Column(Boolean, nullable=False, default=False)  # terminal, not retried automatically
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    consultation = relationship("Consultation", back_populates="files")
    appointment = relationship("Appointment", back_populates="files")


class ClinicalSummary(Base):
    __tablename__ = "clinical_summaries"

    id = Column(String(120), primary_key=True, default=_uuid)
    consultation_id = Column(String(120), ForeignKey("consultations.id"), nullable=False, unique=True)
    patient_id = Column(String(120), ForeignKey("patients.id"), nullable=False)
    appointment_id = Column(String(120), ForeignKey("appointments.id"), nullable=True)
    summary_json = Column(JSON, nullable=False)
    processing_status = Column(String(20), nullable=False, default=ProcessingStatus.COMPLETED.value)
    fallback_reason = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=utcnow)
