"""
Unit tests for schema validator.
"""
from __future__ import annotations

from packages.shared.schema_validator import validate_summary


def _summary(**overrides):
    data = {
        "chief_complaint": "Headache",
        "history_of_present_illness": "Three days of frontal headache.",
        "differential_diagnoses": ["Tension headache"],
        "recommended_tests": [],
        "urgency_level": "routine",
    }
    data.update(overrides)
    return data


def test_validate_summary_valid():
    is_valid, errors = validate_summary(_summary())
    assert is_valid, errors


def test_validate_summary_rejects_extra_fields():
    is_valid, errors = validate_summary(_summary(notes="free text"))
    assert not is_valid
    assert any("notes" in e for e in errors)


def test_validate_summary_rejects_bad_urgency():
    is_valid, errors = validate_summary(_summary(urgency_level="stat"))
    assert not is_valid
    assert errors[0].startswith("urgency_level")


def test_validate_summary_rejects_long_lists():
    is_valid, _ = validate_summary(_summary(recommended_tests=["CBC"] * 11))
    assert not is_valid
