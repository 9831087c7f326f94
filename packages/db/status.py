"""
Appointment processing-status transitions.

`processing_status` is the only shared mutable coordination state of the
pipeline. Every pipeline-driven change goes through `compare_and_set_status`,
a single conditional UPDATE whose affected-row count says whether this caller
won the transition.
"""
from __future__ import annotations

import logging
from typing import Iterable

from packages.db.database import get_session
from packages.db.models import Appointment, utcnow
from packages.shared.models.enums import ProcessingStatus, can_transition

logger = logging.getLogger(__name__)


def _as_status(value: ProcessingStatus | str) -> ProcessingStatus:
    return value if isinstance(value, ProcessingStatus) else ProcessingStatus(value)


def compare_and_set_status(
    appointment_id: str,
    expected: ProcessingStatus | Iterable[ProcessingStatus],
    new: ProcessingStatus,
    *,
    error_message: str | None = None,
    clear_error: bool = False,
) -> bool:
    """
    Atomically move the appointment to *new* if its current status is one of
    *expected*. Returns True when exactly one row changed.
    """
    expected_set = {_as_status(expected)} if isinstance(expected, (ProcessingStatus, str)) else {
        _as_status(s) for s in expected
    }
    illegal = [s.value for s in expected_set if not can_transition(s, new)]
    if illegal:
        raise ValueError(f"Illegal status transition {illegal} -> {new.value}")

    values: dict = {"processing_status": new.value, "updated_at": utcnow()}
    if error_message is not None:
        values["error_message"] = error_message
    elif clear_error:
        values["error_message"] = None

    with get_session() as session:
        rows_updated = (
            session.query(Appointment)
            .filter(Appointment.id == appointment_id)
            .filter(Appointment.processing_status.in_([s.value for s in expected_set]))
            .update(values, synchronize_session=False)
        )
    return rows_updated == 1


def force_status(
    appointment_id: str,
    new: ProcessingStatus,
    *,
    error_message: str | None = None,
    reason: str = "operator override",
) -> bool:
    """Unconditionally set the status. Reserved for manual recovery."""
    with get_session() as session:
        row = session.query(Appointment).filter_by(id=appointment_id).first()
        if not row:
            return False
        previous = row.processing_status
        row.processing_status = new.value
        row.error_message = error_message
        row.updated_at = utcnow()
    logger.warning(f"[{appointment_id}] Status forced {previous} -> {new.value} ({reason})")
    return True


def set_terminal_status(appointment_id: str, new: ProcessingStatus, *, error_message: str | None = None) -> bool:
    """Write a terminal status for the run that currently owns the appointment."""
    if not new.is_terminal:
        raise ValueError(f"{new.value} is not a terminal status")
    return compare_and_set_status(
        appointment_id,
        ProcessingStatus.PROCESSING,
        new,
        error_message=error_message,
        clear_error=error_message is None,
    )


def get_status(appointment_id: str) -> ProcessingStatus | None:
    with get_session() as session:
        row = session.query(Appointment.processing_status).filter_by(id=appointment_id).first()
    return ProcessingStatus(row[0]) if row else None
