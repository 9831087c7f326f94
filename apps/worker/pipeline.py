"""
Stage 2 orchestrator: turns the collected clinical context into one stored
clinical summary per consultation.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

from apps.worker.lock import SUMMARY_ENTRY_STATUSES, claim_summary
from apps.worker.pipeline_persistence import store_clinical_summary
from apps.worker.steps.step00_validate import check_sufficiency, validate_linkage
from apps.worker.steps.step01_collect_context import collect_context
from apps.worker.steps.step02_build_prompt import build_clinical_prompt
from apps.worker.steps.step03_generate import generate_summary_text
from apps.worker.steps.step04_sanitize import sanitize_summary
from packages.db.status import set_terminal_status
from packages.shared.config import PipelineSettings
from packages.shared.errors import LockConflictError, PipelineError
from packages.shared.gemini import GeminiClient
from packages.shared.models import ProcessingStatus, StageResult

logger = logging.getLogger(__name__)


def run_summary_pipeline(
    appointment_id: str,
    *,
    settings: PipelineSettings,
    client: GeminiClient,
    source: str = "direct_call",
    entry_statuses: Iterable[ProcessingStatus] = SUMMARY_ENTRY_STATUSES,
    sleep: Callable[[float], None] = time.sleep,
) -> StageResult:
    """
    Claim the appointment, build and store its clinical summary, and finish
    with a terminal status. Failures after the claim mark the appointment
    failed; a lost claim is reported as a 409 without touching anything.
    """
    start_time = time.time()
    logger.info(f"[{appointment_id}] Clinical summary requested (source={source})")

    try:
        claim_summary(appointment_id, tuple(entry_statuses))
    except LockConflictError as exc:
        return StageResult(
            status_code=exc.status_code,
            success=False,
            error=exc.message,
            appointment_id=appointment_id,
        )

    try:
        # ── Step 0: Validate linkage ──────────────────────────────────
        logger.info(f"[{appointment_id}] Step 0: Input validation")
        linkage = validate_linkage(appointment_id)

        # ── Step 1: Collect context ───────────────────────────────────
        logger.info(f"[{appointment_id}] Step 1: Collecting clinical context")
        context = collect_context(linkage)
        check_sufficiency(context)

        # ── Step 2: Prompt ────────────────────────────────────────────
        logger.info(f"[{appointment_id}] Step 2: Building prompt")
        prompt = build_clinical_prompt(context)

        # ── Step 3: Generate ──────────────────────────────────────────
        logger.info(f"[{appointment_id}] Step 3: Generating clinical summary")
        outcome = generate_summary_text(
            prompt, appointment_id=appointment_id, client=client, settings=settings, sleep=sleep
        )

        # ── Step 4: Sanitize ──────────────────────────────────────────
        logger.info(f"[{appointment_id}] Step 4: Sanitizing summary")
        summary = outcome.fallback or sanitize_summary(outcome.raw_text or "", appointment_id=appointment_id)

        # ── Step 5: Persist ───────────────────────────────────────────
        stored = store_clinical_summary(
            consultation_id=linkage.consultation_id,
            patient_id=linkage.patient_id,
            appointment_id=appointment_id,
            summary=summary,
        )
        if not set_terminal_status(appointment_id, ProcessingStatus.COMPLETED):
            logger.warning(f"[{appointment_id}] Appointment left processing state before completion was recorded")

        elapsed = time.time() - start_time
        logger.info(
            f"[{appointment_id}] Clinical summary pipeline completed in {elapsed:.1f}s "
            f"(fallback={stored.fallback_reason or 'none'}, created={stored.created})"
        )
        return StageResult(
            message="Clinical summary generated successfully",
            appointment_id=appointment_id,
            details={
                "consultation_id": linkage.consultation_id,
                "summary_id": stored.summary_id,
                "fallback_reason": stored.fallback_reason,
                "already_existed": not stored.created,
            },
        )

    except PipelineError as exc:
        logger.error(f"[{appointment_id}] Clinical summary failed: {exc.message}")
        _fail_appointment(appointment_id, exc.message)
        return StageResult(
            status_code=exc.status_code,
            success=False,
            error=exc.message,
            appointment_id=appointment_id,
        )
    except Exception as exc:
        logger.exception(f"[{appointment_id}] Clinical summary pipeline crashed: {exc}")
        _fail_appointment(appointment_id, str(exc))
        return StageResult(
            status_code=500,
            success=False,
            error=str(exc),
            appointment_id=appointment_id,
        )


def _fail_appointment(appointment_id: str, error: str) -> None:
    """Mark the claimed appointment as failed."""
    try:
        set_terminal_status(appointment_id, ProcessingStatus.FAILED, error_message=error[:2000])
    except Exception as exc:
        logger.error(f"[{appointment_id}] Could not record failed status: {exc}")
