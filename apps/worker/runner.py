"""
Worker runner script.
Polls the database for triggered appointments and runs file processing.
"""
import logging
import os
import sys
import time

# Add project root to path if needed (though usually handled by python -m)
sys.path.append(os.getcwd())

from packages.db.database import get_session, init_db
from packages.db.models import Appointment
from packages.shared.config import PipelineSettings
from packages.shared.gemini import GeminiClient
from packages.shared.models import ProcessingStatus, StageResult
from packages.shared.storage import build_blob_store
from apps.worker.dispatch import handle_file_processing_event

logger = logging.getLogger(__name__)

# Config
POLL_SECONDS = float(os.getenv("RUNNER_POLL_SECONDS", "5"))
BATCH_SIZE = 20


def find_triggered(limit: int = BATCH_SIZE) -> list[str]:
    """Triggered appointments, oldest first. Claiming happens in the lock, not here."""
    with get_session() as session:
        rows = (
            session.query(Appointment.id)
            .filter(Appointment.processing_status == ProcessingStatus.TRIGGERED.value)
            .order_by(Appointment.updated_at, Appointment.created_at)
            .limit(limit)
            .all()
        )
    return [r[0] for r in rows]


def poll_once(settings: PipelineSettings | None = None, client=None, storage=None) -> list[StageResult]:
    settings = settings or PipelineSettings.from_env()
    client = client or GeminiClient.from_settings(settings)
    storage = storage or build_blob_store(settings)

    results = []
    for appointment_id in find_triggered():
        logger.info(f"Picked up triggered appointment {appointment_id}")
        result = handle_file_processing_event(
            {"type": "DIRECT_CALL", "table": "appointments", "record": {"id": appointment_id}, "source": "runner"},
            settings=settings,
            client=client,
            storage=storage,
        )
        if result.status_code == 409:
            logger.info(f"Appointment {appointment_id} claimed by another worker")
        results.append(result)
    return results


def made_progress(results: list[StageResult]) -> bool:
    """False when the sweep was empty or every pick-up errored, so the loop should back off."""
    return any(r.status_code < 500 for r in results)


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    init_db()
    settings = PipelineSettings.from_env()
    client = GeminiClient.from_settings(settings)
    storage = build_blob_store(settings)
    logger.info(f"Worker runner started (poll every {POLL_SECONDS:.0f}s)")

    while True:
        try:
            if not made_progress(poll_once(settings, client, storage)):
                time.sleep(POLL_SECONDS)
        except KeyboardInterrupt:
            logger.info("Worker stopping by user request.")
            break
        except Exception as exc:
            logger.exception(f"Unexpected error in worker loop: {exc}")
            time.sleep(POLL_SECONDS)


if __name__ == "__main__":
    main()
