"""
Per-appointment mutual exclusion built on the processing-status field.

There is no lock service: whoever wins the conditional update owns the
appointment. Losers get a LockConflictError immediately and never wait.
"""
from __future__ import annotations

import logging

from packages.db.status import compare_and_set_status
from packages.shared.errors import LockConflictError
from packages.shared.models.enums import ProcessingStatus

logger = logging.getLogger(__name__)

ARMABLE_STATUSES = (ProcessingStatus.PENDING, ProcessingStatus.PROCESSING_FAILED)
SUMMARY_ENTRY_STATUSES = (ProcessingStatus.READY_FOR_SUMMARY,)
LEGACY_SUMMARY_ENTRY_STATUSES = (ProcessingStatus.PENDING, ProcessingStatus.READY_FOR_SUMMARY)


def arm_appointment(appointment_id: str) -> bool:
    """Mark a fresh or previously incomplete appointment as ready for Stage 1."""
    armed = compare_and_set_status(appointment_id, ARMABLE_STATUSES, ProcessingStatus.TRIGGERED)
    if armed:
        logger.info(f"[{appointment_id}] Armed for file processing")
    else:
        logger.debug(f"[{appointment_id}] Not armed (status is not pending/processing_failed)")
    return armed


def acquire_processing_lock(appointment_id: str) -> None:
    """triggered -> processing, or LockConflictError."""
    if not compare_and_set_status(appointment_id, ProcessingStatus.TRIGGERED, ProcessingStatus.PROCESSING):
        logger.info(f"[{appointment_id}] Already being processed by another instance or not in triggered state")
        raise LockConflictError("Appointment is already being processed or not in correct state")
    logger.info(f"[{appointment_id}] Acquired processing lock")


def hand_off_to_summary(appointment_id: str) -> bool:
    """processing -> ready_for_summary once every file is settled."""
    return compare_and_set_status(appointment_id, ProcessingStatus.PROCESSING, ProcessingStatus.READY_FOR_SUMMARY)


def release_processing_lock(appointment_id: str, *, handed_off: bool, error_message: str | None = None) -> None:
    """
    Give up the Stage 1 lock. After a hand-off the summary stage owns the
    status; otherwise the appointment is parked as processing_failed. Never
    raises: a failed release is logged and left for manual recovery.
    """
    if handed_off:
        logger.info(f"[{appointment_id}] Released processing lock to the summary stage")
        return
    try:
        released = compare_and_set_status(
            appointment_id,
            ProcessingStatus.PROCESSING,
            ProcessingStatus.PROCESSING_FAILED,
            error_message=error_message,
        )
    except Exception as exc:
        logger.error(f"[{appointment_id}] Failed to release processing lock: {exc}")
        return
    if released:
        logger.info(f"[{appointment_id}] Released processing lock with status: processing_failed")
    else:
        logger.warning(f"[{appointment_id}] Lock release found the appointment no longer in processing state")


def claim_summary(appointment_id: str, entry_statuses=SUMMARY_ENTRY_STATUSES) -> None:
    """ready_for_summary -> processing, so only one summary run proceeds."""
    if not compare_and_set_status(appointment_id, entry_statuses, ProcessingStatus.PROCESSING):
        logger.info(f"[{appointment_id}] Summary generation already claimed or appointment not ready")
        raise LockConflictError("Clinical summary generation already in progress or appointment not ready")
    logger.info(f"[{appointment_id}] Claimed summary generation")
