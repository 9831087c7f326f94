"""
Integration tests: Stage 1 document processing and completion detection.
"""
from __future__ import annotations

import functools
import threading

from apps.worker.document_processor import process_appointment_files
from apps.worker.pipeline import run_summary_pipeline
from packages.shared.errors import UpstreamOverloadedError, UpstreamProtocolError
from packages.shared.models import StageResult
from tests.helpers import appointment_row, file_row, summaries_for


class RecordingRunner:
    def __init__(self):
        self.calls = []

    def __call__(self, appointment_id):
        self.calls.append(appointment_id)
        return StageResult(message="stub summary", appointment_id=appointment_id)


def _run(appointment_id, settings, client, storage, runner=None):
    runner = runner or functools.partial(run_summary_pipeline, settings=settings, client=client)
    return process_appointment_files(
        appointment_id, settings=settings, client=client, storage=storage, summary_runner=runner
    )


def test_all_files_processed_then_summary(seed, settings, fake_ai, blob_store):
    ids = seed.intake(status="triggered")
    pdf = seed.file(ids["consultation_id"], ids["appointment_id"], name="labs.pdf")
    png = seed.file(ids["consultation_id"], ids["appointment_id"], name="xray.png", file_type="image/png", data=b"\x89PNG")

    result = _run(ids["appointment_id"], settings, fake_ai, blob_store)

    assert result.status_code == 200
    body = result.to_body()
    assert body["total_files"] == 2
    assert body["successful_files"] == 2
    assert body["all_files_processed"] is True
    assert body["clinical_summary_triggered"] is True
    assert body["summary"]["success"] is True
    assert "extracted_text" not in body["results"][0]

    assert file_row(pdf).processed is True
    assert file_row(pdf).extracted_text == "CBC: hemoglobin 13.2 g/dL"
    assert file_row(png).extracted_text == "Chest radiograph, PA view"
    assert appointment_row(ids["appointment_id"]).processing_status == "completed"
    assert len(summaries_for(ids["consultation_id"])) == 1
    assert "CBC: hemoglobin 13.2 g/dL" in fake_ai.summary_prompts[0]


def test_terminal_failure_does_not_block(seed, settings, fake_ai, blob_store):
    ids = seed.intake(status="triggered")
    seed.file(ids["consultation_id"], ids["appointment_id"], name="labs.pdf")
    doc = seed.file(ids["consultation_id"], ids["appointment_id"], name="notes.docx", file_type="application/msword")

    result = _run(ids["appointment_id"], settings, fake_ai, blob_store)

    body = result.to_body()
    assert body["failed_files"] == 1
    assert body["all_files_processed"] is True
    row = file_row(doc)
    assert row.processed is False
    assert row.extraction_failed is True
    assert "Unsupported file type" in row.extraction_error
    assert appointment_row(ids["appointment_id"]).processing_status == "completed"
    assert "[No text could be extracted from this file]" in fake_ai.summary_prompts[0]


def test_transient_failure_leaves_processing_failed(seed, settings, fake_ai, blob_store):
    ids = seed.intake(status="triggered")
    pdf = seed.file(ids["consultation_id"], ids["appointment_id"], name="labs.pdf")
    fake_ai.document_error = UpstreamOverloadedError("busy", status=503)
    runner = RecordingRunner()

    result = _run(ids["appointment_id"], settings, fake_ai, blob_store, runner)

    assert result.status_code == 200
    assert result.details["all_files_processed"] is False
    assert result.details["clinical_summary_triggered"] is False
    assert runner.calls == []
    assert file_row(pdf).extraction_failed is False
    appt = appointment_row(ids["appointment_id"])
    assert appt.processing_status == "processing_failed"
    assert "still awaiting" in appt.error_message
    assert summaries_for(ids["consultation_id"]) == []


def test_rejected_document_still_reaches_summary(seed, settings, fake_ai, blob_store):
    ids = seed.intake(status="triggered")
    pdf = seed.file(ids["consultation_id"], ids["appointment_id"], name="labs.pdf")
    fake_ai.document_error = UpstreamProtocolError("generateContent failed: 400 - invalid document", status=400)

    result = _run(ids["appointment_id"], settings, fake_ai, blob_store)

    assert result.details["all_files_processed"] is True
    assert result.details["clinical_summary_triggered"] is True
    row = file_row(pdf)
    assert row.processed is False
    assert row.extraction_failed is True
    assert "400" in row.extraction_error
    assert appointment_row(ids["appointment_id"]).processing_status == "completed"
    assert len(summaries_for(ids["consultation_id"])) == 1


def test_processed_files_are_skipped(seed, settings, fake_ai, blob_store):
    ids = seed.intake(status="triggered")
    seed.file(ids["consultation_id"], ids["appointment_id"], name="labs.pdf", processed=True, extracted_text="old")
    seed.file(ids["consultation_id"], ids["appointment_id"], name="new.pdf", file_type="application/pdf",
              data=None)
    runner = RecordingRunner()

    result = _run(ids["appointment_id"], settings, fake_ai, blob_store, runner)

    # The processed file is skipped; the missing blob is a transient failure.
    assert result.details["total_files"] == 1
    assert runner.calls == []
    assert fake_ai.uploads == []


def test_no_files_goes_straight_to_summary(seed, settings, fake_ai, blob_store):
    ids = seed.intake(status="triggered")
    runner = RecordingRunner()

    result = _run(ids["appointment_id"], settings, fake_ai, blob_store, runner)

    assert result.message == "No files to process"
    assert runner.calls == [ids["appointment_id"]]
    assert appointment_row(ids["appointment_id"]).processing_status == "ready_for_summary"


def test_lock_conflict_writes_nothing(seed, settings, fake_ai, blob_store):
    ids = seed.intake(status="pending")
    pdf = seed.file(ids["consultation_id"], ids["appointment_id"])

    result = _run(ids["appointment_id"], settings, fake_ai, blob_store)

    assert result.status_code == 409
    assert result.to_body()["concurrent_processing"] is True
    assert file_row(pdf).processed is False
    assert fake_ai.uploads == []
    assert appointment_row(ids["appointment_id"]).processing_status == "pending"


def test_concurrent_triggers_process_once(seed, settings, fake_ai, blob_store):
    ids = seed.intake(status="triggered")
    seed.file(ids["consultation_id"], ids["appointment_id"])
    barrier = threading.Barrier(2)
    results = []

    def worker():
        barrier.wait()
        results.append(_run(ids["appointment_id"], settings, fake_ai, blob_store))

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(r.status_code for r in results) == [200, 409]
    assert fake_ai.uploads == ["labs.pdf"]
    assert len(summaries_for(ids["consultation_id"])) == 1
