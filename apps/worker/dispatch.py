"""
Event routing for the two ingress endpoints.

Each handler parses the payload into one of the known dialects, decides
whether the event concerns its stage, and runs the stage. Every path returns
a StageResult; nothing raises out of a handler.
"""
from __future__ import annotations

import functools
import logging
from typing import Any, Optional

from apps.worker.document_processor import process_appointment_files
from apps.worker.lock import LEGACY_SUMMARY_ENTRY_STATUSES, SUMMARY_ENTRY_STATUSES, arm_appointment
from apps.worker.pipeline import run_summary_pipeline
from packages.shared.config import PipelineSettings
from packages.shared.errors import MalformedEventError, MissingInputError, PipelineError
from packages.shared.gemini import GeminiClient
from packages.shared.models import (
    ChangeType,
    CoordinatedTrigger,
    ProcessingStatus,
    StageResult,
    TableChange,
    UnrecognizedEvent,
    parse_event,
)
from packages.shared.storage import BlobStore, build_blob_store

logger = logging.getLogger(__name__)

APPOINTMENTS_TABLE = "appointments"
PATIENT_FILES_TABLE = "patient_files"

NOT_LINKED_MESSAGE = "File uploaded but not yet linked to appointment - waiting for coordination"


def _noop(message: str, appointment_id: Optional[str] = None, **details: Any) -> StageResult:
    logger.info(f"Event ignored: {message}")
    return StageResult(message=message, appointment_id=appointment_id, details=dict(details))


def _error_result(exc: Exception, appointment_id: Optional[str] = None) -> StageResult:
    if isinstance(exc, PipelineError):
        return StageResult(
            status_code=exc.status_code,
            success=exc.status_code < 400,
            message=exc.message if exc.status_code < 400 else None,
            error=exc.message if exc.status_code >= 400 else None,
            appointment_id=appointment_id,
        )
    return StageResult(status_code=500, success=False, error=str(exc), appointment_id=appointment_id)


def _record_id(change: TableChange) -> str:
    appointment_id = change.value("id") or change.value("appointment_id")
    if not appointment_id:
        raise MissingInputError("Missing appointment id in appointment record")
    return str(appointment_id)


def _status_became(change: TableChange, status: ProcessingStatus) -> bool:
    return (
        change.value("processing_status") == status.value
        and change.old_value("processing_status") != status.value
    )


def _parse(payload: Any):
    event = parse_event(payload)
    if isinstance(event, UnrecognizedEvent):
        raise MalformedEventError(event.reason)
    return event


# ── Stage 1 ───────────────────────────────────────────────────────────

def _route_file_event(event) -> tuple[Optional[str], bool, str]:
    """Return (appointment_id or None for no-op, arm first, trigger/no-op reason)."""
    if isinstance(event, CoordinatedTrigger):
        return event.appointment_id, False, f"coordinated trigger {event.request_id}"

    if event.table == PATIENT_FILES_TABLE:
        appointment_id = event.value("appointment_id")
        if event.type == ChangeType.INSERT:
            if not appointment_id:
                return None, False, NOT_LINKED_MESSAGE
            return str(appointment_id), True, "file inserted"
        if event.type == ChangeType.UPDATE:
            if appointment_id and not event.old_value("appointment_id"):
                return str(appointment_id), True, "file linked to appointment"
            return None, False, "File update does not link a new appointment - nothing to do"
        return None, False, f"Ignoring {event.type.value} on {event.table}"

    if event.table == APPOINTMENTS_TABLE:
        if event.type == ChangeType.INSERT:
            return _record_id(event), True, "appointment created"
        if event.type == ChangeType.UPDATE:
            if _status_became(event, ProcessingStatus.TRIGGERED):
                return _record_id(event), False, "appointment updated"
            return None, False, "Appointment update does not require file processing"
        if event.type == ChangeType.DIRECT_CALL:
            return _record_id(event), False, "direct call"
        return None, False, f"Ignoring {event.type.value} on {event.table}"

    return None, False, f"Ignoring events for table {event.table}"


def handle_file_processing_event(
    payload: Any,
    *,
    settings: Optional[PipelineSettings] = None,
    client: Optional[GeminiClient] = None,
    storage: Optional[BlobStore] = None,
) -> StageResult:
    appointment_id: Optional[str] = None
    try:
        event = _parse(payload)
        appointment_id, arm, reason = _route_file_event(event)
        if appointment_id is None:
            return _noop(reason)

        logger.info(f"[{appointment_id}] File processing triggered ({reason})")
        settings = settings or PipelineSettings.from_env()
        client = client or GeminiClient.from_settings(settings)
        storage = storage or build_blob_store(settings)

        if arm:
            arm_appointment(appointment_id)

        summary_runner = functools.partial(
            run_summary_pipeline, settings=settings, client=client, source="direct_call"
        )
        return process_appointment_files(
            appointment_id,
            settings=settings,
            client=client,
            storage=storage,
            summary_runner=summary_runner,
        )
    except Exception as exc:
        if isinstance(exc, MalformedEventError):
            return _noop(exc.message)
        logger.exception(f"[{appointment_id or '-'}] File processing event failed: {exc}")
        return _error_result(exc, appointment_id)


# ── Stage 2 ───────────────────────────────────────────────────────────

def _route_summary_event(event) -> tuple[Optional[str], tuple, str]:
    if isinstance(event, CoordinatedTrigger):
        return event.appointment_id, SUMMARY_ENTRY_STATUSES, "coordinated"
    if event.table != APPOINTMENTS_TABLE:
        return None, (), f"Ignoring events for table {event.table}"

    if event.type == ChangeType.DIRECT_CALL:
        return _record_id(event), SUMMARY_ENTRY_STATUSES, event.source or "direct_call"
    if event.type == ChangeType.UPDATE:
        if _status_became(event, ProcessingStatus.READY_FOR_SUMMARY):
            return _record_id(event), SUMMARY_ENTRY_STATUSES, "status_change"
        return None, (), "Appointment status does not require clinical summary generation"
    if event.type == ChangeType.INSERT:
        accepted = {s.value for s in LEGACY_SUMMARY_ENTRY_STATUSES}
        if event.value("processing_status") in accepted:
            return _record_id(event), LEGACY_SUMMARY_ENTRY_STATUSES, "appointment_insert"
        return None, (), "Appointment status does not require clinical summary generation"
    return None, (), f"Ignoring {event.type.value} on {event.table}"


def handle_summary_event(
    payload: Any,
    *,
    settings: Optional[PipelineSettings] = None,
    client: Optional[GeminiClient] = None,
) -> StageResult:
    appointment_id: Optional[str] = None
    try:
        event = _parse(payload)
        appointment_id, entry_statuses, source = _route_summary_event(event)
        if appointment_id is None:
            return _noop(source)

        settings = settings or PipelineSettings.from_env()
        client = client or GeminiClient.from_settings(settings)
        return run_summary_pipeline(
            appointment_id,
            settings=settings,
            client=client,
            source=source,
            entry_statuses=entry_statuses,
        )
    except Exception as exc:
        if isinstance(exc, MalformedEventError):
            return _noop(exc.message)
        logger.exception(f"[{appointment_id or '-'}] Summary event failed: {exc}")
        return _error_result(exc, appointment_id)
