"""
Integration test: HTTP ingress and recovery endpoints.
"""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from apps.api.dependencies import get_ai_client, get_blob_store, get_settings
from apps.api.main import app
from tests.helpers import appointment_row, summaries_for


@pytest.fixture
def client(settings, fake_ai, blob_store):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_ai_client] = lambda: fake_ai
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_invalid_json_is_bad_request(client):
    resp = client.post("/events/process-files", content=b"{not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_non_object_json_is_bad_request(client):
    resp = client.post("/events/generate-summary", json=[1, 2, 3])
    assert resp.status_code == 400


def test_unknown_shape_is_accepted_noop(client):
    resp = client.post("/events/process-files", json={"ping": True})
    assert resp.status_code == 200
    assert resp.json()["success"] is True


def test_process_files_end_to_end(client, seed):
    ids = seed.intake(status="triggered")
    seed.file(ids["consultation_id"], ids["appointment_id"], name="labs.pdf")

    resp = client.post("/events/process-files", json={"appointment_id": ids["appointment_id"], "request_id": "r1"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["appointment_id"] == ids["appointment_id"]
    assert body["total_files"] == 1
    assert body["clinical_summary_triggered"] is True
    assert body["summary"]["success"] is True
    assert "X-Request-Id" in resp.headers
    assert appointment_row(ids["appointment_id"]).processing_status == "completed"

    again = client.post("/events/process-files", json={"appointment_id": ids["appointment_id"], "request_id": "r2"})
    assert again.status_code == 409
    assert again.json()["error"] == "Appointment is already being processed or not in correct state"


def test_null_linkage_makes_no_writes(client, seed, fake_ai):
    ids = seed.intake()
    resp = client.post(
        "/events/process-files",
        json={"type": "INSERT", "table": "patient_files", "record": {"id": "f1", "appointment_id": None}},
    )
    assert resp.status_code == 200
    assert "not yet linked" in resp.json()["message"]
    assert appointment_row(ids["appointment_id"]).processing_status == "pending"
    assert fake_ai.uploads == []


def test_generate_summary_insufficient_data(client, seed):
    ids = seed.intake(form_data={}, status="ready_for_summary")
    resp = client.post(
        "/events/generate-summary",
        json={"type": "DIRECT_CALL", "table": "appointments", "record": {"id": ids["appointment_id"]}},
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "Insufficient data for clinical summary generation"
    assert appointment_row(ids["appointment_id"]).processing_status == "failed"


def test_request_id_is_echoed(client):
    resp = client.get("/health", headers={"X-Request-Id": "abc123"})
    assert resp.headers["X-Request-Id"] == "abc123"


def test_oversized_body_rejected(client):
    resp = client.post("/events/process-files", content=b"x" * (2 * 1024 * 1024), headers={"Content-Type": "application/json"})
    assert resp.status_code == 413


def test_internal_token_required_when_configured(client, monkeypatch):
    monkeypatch.setenv("API_INTERNAL_TOKEN", "s" * 32)
    assert client.post("/events/process-files", json={"ping": True}).status_code == 401
    ok = client.post("/events/process-files", json={"ping": True}, headers={"X-Internal-Token": "s" * 32})
    assert ok.status_code == 200


def test_pipeline_diagnostics(client, seed):
    ids = seed.intake(status="ready_for_summary")
    client.post(f"/appointments/{ids['appointment_id']}/retrigger/summary")

    resp = client.get(f"/appointments/{ids['appointment_id']}/pipeline")
    assert resp.status_code == 200
    body = resp.json()
    assert body["processing_status"] == "completed"
    assert body["clinical_summary"]["exists"] is True
    assert body["clinical_summary"]["is_fallback"] is False
    assert len(summaries_for(ids["consultation_id"])) == 1


def test_unknown_appointment_is_404(client):
    assert client.get("/appointments/nope/pipeline").status_code == 404
    assert client.post("/appointments/nope/retrigger/files").status_code == 404
