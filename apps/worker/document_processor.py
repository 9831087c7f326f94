"""
Stage 1: extract text from every unprocessed file attached to an appointment.

Runs under the per-appointment processing lock. When the batch leaves every
file settled, the lock is handed to the summary stage, which is invoked
directly rather than through a second event.
"""
from __future__ import annotations

import logging
import time
from typing import Callable

from apps.worker.completion import check_files_settled
from apps.worker.extraction import extract_file
from apps.worker.lock import acquire_processing_lock, hand_off_to_summary, release_processing_lock
from apps.worker.pipeline_persistence import load_unprocessed_files, persist_file_result
from packages.shared.config import PipelineSettings
from packages.shared.errors import LockConflictError
from packages.shared.gemini import GeminiClient
from packages.shared.models import FileExtractionResult, StageResult
from packages.shared.storage import BlobStore

logger = logging.getLogger(__name__)

SummaryRunner = Callable[[str], StageResult]


def _result_entry(result: FileExtractionResult) -> dict:
    entry = result.model_dump(mode="json", exclude={"extracted_text"})
    entry["text_length"] = len(result.extracted_text)
    return entry


def process_appointment_files(
    appointment_id: str,
    *,
    settings: PipelineSettings,
    client: GeminiClient,
    storage: BlobStore,
    summary_runner: SummaryRunner,
) -> StageResult:
    try:
        acquire_processing_lock(appointment_id)
    except LockConflictError as exc:
        return StageResult(
            status_code=exc.status_code,
            success=False,
            error=exc.message,
            appointment_id=appointment_id,
            details={"concurrent_processing": True},
        )

    handed_off = False
    release_error: str | None = None
    try:
        files = load_unprocessed_files(appointment_id)
        logger.info(f"[{appointment_id}] Found {len(files)} files to process")

        results: list[FileExtractionResult] = []
        for file in files:
            logger.info(f"[{appointment_id}] Processing file: {file.file_name} ({file.file_type})")
            result = extract_file(file, client=client, storage=storage, settings=settings)
            try:
                persist_file_result(result)
            except Exception as exc:
                # The row keeps processed=false, so completion detection sees it as outstanding.
                logger.error(f"[{appointment_id}] Could not store result for {file.file_name}: {exc}")
            results.append(result)

        successful = sum(1 for r in results if r.succeeded)
        failed = len(results) - successful
        logger.info(f"[{appointment_id}] File processing completed: {successful} successful, {failed} failed")

        completion = check_files_settled(appointment_id)
        summary: StageResult | None = None
        if completion.all_settled:
            if hand_off_to_summary(appointment_id):
                handed_off = True
                if settings.summary_settle_seconds > 0:
                    time.sleep(settings.summary_settle_seconds)
                logger.info(f"[{appointment_id}] All files settled. Triggering clinical summary generation")
                summary = summary_runner(appointment_id)
            else:
                logger.warning(f"[{appointment_id}] Appointment left processing state before hand-off")
        else:
            release_error = f"{completion.remaining} file(s) still awaiting successful extraction"

        details = {
            "total_files": len(files),
            "successful_files": successful,
            "failed_files": failed,
            "all_files_processed": completion.all_settled,
            "clinical_summary_triggered": summary is not None,
            "results": [_result_entry(r) for r in results],
        }
        if summary is not None:
            details["summary"] = summary.to_body()
        return StageResult(
            message="File processing completed" if files else "No files to process",
            appointment_id=appointment_id,
            details=details,
        )
    except Exception as exc:
        release_error = f"File processing error: {exc}"
        raise
    finally:
        release_processing_lock(appointment_id, handed_off=handed_off, error_message=release_error)
