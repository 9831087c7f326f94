"""
Integration tests: Stage 2 clinical summary generation.
"""
from __future__ import annotations

import json
import threading

from apps.worker.lock import LEGACY_SUMMARY_ENTRY_STATUSES
from apps.worker.pipeline import run_summary_pipeline
from apps.worker.pipeline_persistence import store_clinical_summary
from apps.worker.steps.step04_sanitize import fallback_summary
from packages.shared.errors import UpstreamOverloadedError, UpstreamProtocolError
from packages.shared.models import FallbackReason
from tests.helpers import CHEST_PAIN_SUMMARY, FakeGeminiClient, appointment_row, summaries_for


def _summarize(appointment_id, settings, client, **kwargs):
    return run_summary_pipeline(appointment_id, settings=settings, client=client, sleep=lambda s: None, **kwargs)


def test_happy_path_chest_pain(seed, settings, fake_ai):
    ids = seed.intake(status="ready_for_summary")
    seed.file(ids["consultation_id"], ids["appointment_id"], name="ecg.pdf", processed=True,
              extracted_text="ECG: sinus rhythm, ST depression in V4-V6")

    result = _summarize(ids["appointment_id"], settings, fake_ai)

    assert result.status_code == 200
    assert result.details["fallback_reason"] is None
    assert result.details["already_existed"] is False
    appt = appointment_row(ids["appointment_id"])
    assert appt.processing_status == "completed"
    assert appt.error_message is None
    rows = summaries_for(ids["consultation_id"])
    assert len(rows) == 1
    assert rows[0].summary_json == CHEST_PAIN_SUMMARY
    assert rows[0].patient_id == ids["patient_id"]
    prompt = fake_ai.summary_prompts[0]
    assert 'PRIMARY CHIEF COMPLAINT as: "Chest pain"' in prompt
    assert "ST depression" in prompt


def test_insufficient_data(seed, settings, fake_ai):
    ids = seed.intake(form_data={}, status="ready_for_summary")

    result = _summarize(ids["appointment_id"], settings, fake_ai)

    assert result.status_code == 400
    assert result.error == "Insufficient data for clinical summary generation"
    appt = appointment_row(ids["appointment_id"])
    assert appt.processing_status == "failed"
    assert appt.error_message == "Insufficient data for clinical summary generation"
    assert fake_ai.summary_prompts == []
    assert summaries_for(ids["consultation_id"]) == []


def test_voice_data_alone_is_sufficient(seed, settings, fake_ai):
    ids = seed.intake(form_data={}, voice_data={"transcript": "tight chest since yesterday"}, status="ready_for_summary")
    assert _summarize(ids["appointment_id"], settings, fake_ai).status_code == 200
    assert "tight chest since yesterday" in fake_ai.summary_prompts[0]


def test_missing_linkage(seed, settings, fake_ai):
    appt = seed.appointment(status="ready_for_summary")

    result = _summarize(appt, settings, fake_ai)

    assert result.status_code == 400
    assert result.error == "Missing consultation_id or patient_id"
    assert appointment_row(appt).processing_status == "failed"
    assert fake_ai.summary_prompts == []


def test_overload_exhaustion_uses_fallback(seed, settings):
    ids = seed.intake(status="ready_for_summary")
    client = FakeGeminiClient(summary_responses=[UpstreamOverloadedError("busy", status=503) for _ in range(3)])

    result = _summarize(ids["appointment_id"], settings, client)

    assert result.status_code == 200
    assert result.details["fallback_reason"] == "upstream_overloaded"
    assert len(client.summary_prompts) == 3
    assert appointment_row(ids["appointment_id"]).processing_status == "completed"
    row = summaries_for(ids["consultation_id"])[0]
    assert row.fallback_reason == "upstream_overloaded"
    assert row.summary_json["urgency_level"] == "routine"
    assert row.summary_json["differential_diagnoses"] == ["Requires manual medical review"]


def test_overload_then_success(seed, settings):
    ids = seed.intake(status="ready_for_summary")
    client = FakeGeminiClient(summary_responses=[UpstreamOverloadedError("busy", status=429), json.dumps(CHEST_PAIN_SUMMARY)])

    result = _summarize(ids["appointment_id"], settings, client)

    assert result.details["fallback_reason"] is None
    assert len(client.summary_prompts) == 2


def test_protocol_error_fails_appointment(seed, settings):
    ids = seed.intake(status="ready_for_summary")
    client = FakeGeminiClient(summary_responses=[UpstreamProtocolError("generateContent failed: 400 - bad", status=400)])

    result = _summarize(ids["appointment_id"], settings, client)

    assert result.status_code == 500
    assert len(client.summary_prompts) == 1
    appt = appointment_row(ids["appointment_id"])
    assert appt.processing_status == "failed"
    assert "400" in appt.error_message


def test_unparseable_response_uses_fallback(seed, settings):
    ids = seed.intake(status="ready_for_summary")
    client = FakeGeminiClient(summary_responses=["Sorry, I can't produce JSON today."])

    result = _summarize(ids["appointment_id"], settings, client)

    assert result.status_code == 200
    assert result.details["fallback_reason"] == "unparseable_response"
    assert appointment_row(ids["appointment_id"]).processing_status == "completed"


def test_not_ready_is_conflict(seed, settings, fake_ai):
    ids = seed.intake(status="processing")

    result = _summarize(ids["appointment_id"], settings, fake_ai)

    assert result.status_code == 409
    assert appointment_row(ids["appointment_id"]).processing_status == "processing"
    assert fake_ai.summary_prompts == []


def test_completed_appointment_is_not_regenerated(seed, settings, fake_ai):
    ids = seed.intake(status="ready_for_summary")
    assert _summarize(ids["appointment_id"], settings, fake_ai).status_code == 200
    assert _summarize(ids["appointment_id"], settings, fake_ai).status_code == 409
    assert len(summaries_for(ids["consultation_id"])) == 1


def test_existing_summary_is_kept(seed, settings, fake_ai):
    ids = seed.intake(status="ready_for_summary")
    store_clinical_summary(
        consultation_id=ids["consultation_id"],
        patient_id=ids["patient_id"],
        appointment_id=ids["appointment_id"],
        summary=fallback_summary(FallbackReason.UNPARSEABLE_RESPONSE),
    )

    result = _summarize(ids["appointment_id"], settings, fake_ai)

    assert result.details["already_existed"] is True
    assert result.details["fallback_reason"] == "unparseable_response"
    assert len(summaries_for(ids["consultation_id"])) == 1
    assert appointment_row(ids["appointment_id"]).processing_status == "completed"


def test_duplicate_triggers_produce_one_summary(seed, settings, fake_ai):
    ids = seed.intake(status="ready_for_summary")
    barrier = threading.Barrier(2)
    results = []

    def worker():
        barrier.wait()
        results.append(_summarize(ids["appointment_id"], settings, fake_ai))

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(r.status_code for r in results) == [200, 409]
    assert len(summaries_for(ids["consultation_id"])) == 1


def test_legacy_insert_entry(seed, settings, fake_ai):
    ids = seed.intake(status="pending")
    result = _summarize(ids["appointment_id"], settings, fake_ai, entry_statuses=LEGACY_SUMMARY_ENTRY_STATUSES)
    assert result.status_code == 200
    assert appointment_row(ids["appointment_id"]).processing_status == "completed"
