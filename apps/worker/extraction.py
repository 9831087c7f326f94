"""
Per-file text extraction (Stage 1 worker unit).

PDF documents are uploaded to the AI file API and read back as raw text;
images are sent inline for an objective visual description. Every failure is
turned into a failed FileExtractionResult so one file never aborts the batch.
"""
from __future__ import annotations

import base64
import logging
import time

from packages.shared.config import PipelineSettings
from packages.shared.errors import UnsupportedFileTypeError
from packages.shared.gemini import (
    DOCUMENT_EXTRACTION_CONFIG,
    IMAGE_ANALYSIS_CONFIG,
    GeminiClient,
    file_part,
    inline_part,
    text_part,
)
from packages.shared.models import FileExtractionResult, FileKind, FileRef
from packages.shared.storage import BlobStore

logger = logging.getLogger(__name__)

DOCUMENT_MIME_TYPES = frozenset({"application/pdf"})

DOCUMENT_EXTRACTION_PROMPT = """Extract all medically relevant text content from this PDF document. Focus on:

PATIENT INFORMATION:
- Patient name, age, gender, date of birth
- Contact information and demographics
- Medical record numbers or identifiers

MEDICAL HISTORY:
- Past medical history and conditions
- Previous surgeries or procedures
- Family medical history
- Social history (smoking, alcohol, drugs)

CURRENT PRESENTATION:
- Chief complaint and presenting symptoms
- History of present illness
- Review of systems
- Duration and severity of symptoms

CLINICAL FINDINGS:
- Physical examination findings
- Vital signs (blood pressure, heart rate, temperature, etc.)
- Laboratory test results and values
- Imaging study results
- Diagnostic test interpretations

MEDICAL MANAGEMENT:
- Current medications and dosages
- Allergies and adverse reactions
- Treatment plans and recommendations
- Follow-up instructions
- Specialist referrals

ASSESSMENTS AND DIAGNOSES:
- Primary and secondary diagnoses
- ICD codes if present
- Clinical assessments
- Differential diagnoses

Return ONLY the extracted text content as written in the document. Preserve all medical terminology, values, and clinical details exactly. Do not add interpretation, analysis, or additional context. If specific sections are not present in the document, omit them from the output."""

IMAGE_ANALYSIS_PROMPT = """Analyze this medical image and extract all visible medically relevant information. Focus on:

ANATOMICAL STRUCTURES:
- Organs, bones, tissues, or body parts visible
- Anatomical landmarks and orientation
- Size, shape, and positioning of structures

VISIBLE ABNORMALITIES:
- Any visible lesions, irregularities, or variations
- Areas of unusual appearance
- Comparative observations (left vs right)

MEDICAL DEVICES AND EQUIPMENT:
- Surgical implants, prosthetics, or hardware
- Monitoring devices, catheters, or tubes
- Medical instruments visible in the image

TEXT AND LABELS:
- Patient identifiers or demographic information
- Date and time stamps
- Technical parameters or settings
- Radiologist annotations or markings

MEASUREMENTS AND VALUES:
- Quantitative measurements shown
- Scale indicators, rulers or reference markers

IMAGE TYPE AND TECHNIQUE:
- Modality (X-ray, MRI, CT, ultrasound, photograph, etc.)
- View or projection angle
- Contrast or enhancement used
- Image quality

Provide a comprehensive, factual description of all visible elements. Include any text, numbers, or measurements exactly as they appear. Do not provide medical interpretations, diagnoses, or treatment recommendations - only describe what is objectively visible in the image."""


def classify_file_type(file_type: str | None) -> FileKind:
    mime = (file_type or "").strip().lower()
    if mime in DOCUMENT_MIME_TYPES:
        return FileKind.DOCUMENT
    if mime.startswith("image/"):
        return FileKind.IMAGE
    return FileKind.UNSUPPORTED


def _extract_document(file: FileRef, data: bytes, client: GeminiClient, settings: PipelineSettings) -> str:
    logger.info(f"Uploading {file.file_name} to the AI file API ({len(data)} bytes)")
    with client.uploaded_file(data, file.file_type, file.file_name) as uploaded:
        active = client.wait_until_active(
            uploaded,
            interval=settings.file_poll_interval_seconds,
            timeout=settings.file_poll_timeout_seconds,
        )
        logger.info(f"Extracting medically relevant text from {file.file_name}")
        return client.generate_content(
            [file_part(active), text_part(DOCUMENT_EXTRACTION_PROMPT)],
            DOCUMENT_EXTRACTION_CONFIG,
        )


def _extract_image(file: FileRef, data: bytes, client: GeminiClient) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    logger.info(f"Analyzing image {file.file_name} ({len(data)} bytes)")
    return client.generate_content(
        [inline_part(file.file_type, encoded), text_part(IMAGE_ANALYSIS_PROMPT)],
        IMAGE_ANALYSIS_CONFIG,
    )


def extract_file(
    file: FileRef,
    *,
    client: GeminiClient,
    storage: BlobStore,
    settings: PipelineSettings,
) -> FileExtractionResult:
    started = time.monotonic()
    kind = classify_file_type(file.file_type)

    def _result(status: str, text: str = "", error: Exception | None = None) -> FileExtractionResult:
        return FileExtractionResult(
            file_id=file.file_id,
            file_name=file.file_name,
            file_type=file.file_type,
            kind=kind,
            status=status,
            extracted_text=text,
            error_message=str(error) if error else None,
            terminal=bool(getattr(error, "terminal", False)),
            processing_ms=int((time.monotonic() - started) * 1000),
        )

    try:
        if kind is FileKind.UNSUPPORTED:
            raise UnsupportedFileTypeError(f"Unsupported file type: {file.file_type}")
        data = storage.fetch(
            file.file_path,
            max_bytes=settings.max_file_bytes,
            expires_in=settings.signed_url_ttl_seconds,
        )
        if kind is FileKind.DOCUMENT:
            text = _extract_document(file, data, client, settings)
        else:
            text = _extract_image(file, data, client)
    except Exception as exc:
        logger.error(f"Processing failed for {file.file_name} ({file.file_type}): {exc}")
        return _result("failed", error=exc)

    return _result("completed", text=text.strip())
