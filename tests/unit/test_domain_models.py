"""
Unit tests for domain helpers and the status transition table.
"""
from __future__ import annotations

from datetime import date

from packages.shared.models import ProcessingStatus, StageResult, can_transition, compute_age


def test_compute_age_before_and_after_birthday():
    dob = date(1970, 6, 15)
    assert compute_age(dob, date(2024, 6, 14)) == 53
    assert compute_age(dob, date(2024, 6, 15)) == 54
    assert compute_age(None, date(2024, 1, 1)) is None


def test_stage_result_body():
    body = StageResult(message="done", appointment_id="a1", details={"total_files": 2}).to_body()
    assert body == {"success": True, "message": "done", "appointment_id": "a1", "total_files": 2}
    body = StageResult(status_code=409, success=False, error="busy").to_body()
    assert body == {"success": False, "error": "busy"}


def test_terminal_statuses_have_no_exits():
    for status in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED):
        assert status.is_terminal
        assert not any(can_transition(status, other) for other in ProcessingStatus)


def test_pipeline_path_is_allowed():
    path = [
        ProcessingStatus.PENDING,
        ProcessingStatus.TRIGGERED,
        ProcessingStatus.PROCESSING,
        ProcessingStatus.READY_FOR_SUMMARY,
        ProcessingStatus.PROCESSING,
        ProcessingStatus.COMPLETED,
    ]
    assert all(can_transition(a, b) for a, b in zip(path, path[1:]))


def test_processing_failed_can_only_be_rearmed():
    assert can_transition(ProcessingStatus.PROCESSING_FAILED, ProcessingStatus.TRIGGERED)
    assert not can_transition(ProcessingStatus.PROCESSING_FAILED, ProcessingStatus.PROCESSING)
