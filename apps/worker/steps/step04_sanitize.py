"""
Step 4: Parse and sanitize the model output.

The model is asked for bare JSON but routinely wraps it in prose or code
fences. The first balanced JSON object in the text is taken, coerced into the
persisted shape, clamped to storage limits and checked against the schema.
Anything that cannot be turned into a valid summary becomes the
unparseable-response fallback.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

from packages.shared.errors import ResponseSchemaError
from packages.shared.models import ClinicalSummaryPayload, FallbackReason, SanitizedSummary, UrgencyLevel
from packages.shared.schema_validator import validate_summary

logger = logging.getLogger(__name__)

MAX_CHIEF_COMPLAINT_CHARS = 1000
MAX_HISTORY_CHARS = 2000
MAX_ITEM_CHARS = 200
MAX_LIST_ITEMS = 10

REQUIRED_FIELDS = ("chief_complaint", "history_of_present_illness")

_FALLBACK_TEXT = {
    FallbackReason.UPSTREAM_OVERLOADED: (
        "Unable to generate due to API overload - please try again later",
        "AI service temporarily unavailable. Please review patient data manually.",
    ),
    FallbackReason.UNPARSEABLE_RESPONSE: (
        "Unable to parse AI response - manual review required",
        "Patient data available but AI analysis failed. Please review consultation details manually.",
    ),
}


def fallback_summary(reason: FallbackReason) -> SanitizedSummary:
    chief_complaint, history = _FALLBACK_TEXT[reason]
    return SanitizedSummary(
        payload=ClinicalSummaryPayload(
            chief_complaint=chief_complaint,
            history_of_present_illness=history,
            differential_diagnoses=["Requires manual medical review"],
            recommended_tests=["Standard evaluation recommended"],
            urgency_level=UrgencyLevel.ROUTINE,
        ),
        fallback_reason=reason,
    )


def find_json_object(text: str) -> Optional[str]:
    """Return the first balanced {...} span, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this brace; try the next one.
        start = text.find("{", start + 1)
    return None


def _clip(value: str, limit: int) -> str:
    return value.strip()[:limit]


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    items = [_clip(v, MAX_ITEM_CHARS) for v in value if isinstance(v, str) and v.strip()]
    return items[:MAX_LIST_ITEMS]


def _urgency(value: Any) -> UrgencyLevel:
    if isinstance(value, str):
        try:
            return UrgencyLevel(value.strip().lower())
        except ValueError:
            pass
    return UrgencyLevel.ROUTINE


def _coerce(data: dict[str, Any]) -> dict[str, Any]:
    for field in REQUIRED_FIELDS:
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            raise ResponseSchemaError(f"Missing required field: {field}")
    return {
        "chief_complaint": _clip(data["chief_complaint"], MAX_CHIEF_COMPLAINT_CHARS),
        "history_of_present_illness": _clip(data["history_of_present_illness"], MAX_HISTORY_CHARS),
        "differential_diagnoses": _string_list(data.get("differential_diagnoses")),
        "recommended_tests": _string_list(data.get("recommended_tests")),
        "urgency_level": _urgency(data.get("urgency_level")).value,
    }


def parse_summary(raw_text: str) -> ClinicalSummaryPayload:
    candidate = find_json_object(raw_text or "")
    if candidate is None:
        raise ResponseSchemaError("No JSON object found in AI response")
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ResponseSchemaError(f"Invalid JSON in AI response: {exc}") from exc
    if not isinstance(data, dict):
        raise ResponseSchemaError("AI response JSON is not an object")

    cleaned = _coerce(data)
    valid, messages = validate_summary(cleaned)
    if not valid:
        raise ResponseSchemaError("; ".join(messages))
    return ClinicalSummaryPayload(**cleaned)


def sanitize_summary(raw_text: str, *, appointment_id: str = "") -> SanitizedSummary:
    try:
        payload = parse_summary(raw_text)
    except ResponseSchemaError as exc:
        logger.error(f"[{appointment_id}] Failed to parse AI response: {exc.message}")
        return fallback_summary(FallbackReason.UNPARSEABLE_RESPONSE)
    return SanitizedSummary(payload=payload)
