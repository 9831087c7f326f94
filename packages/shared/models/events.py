"""
Change-notification payloads accepted by the ingress endpoints.

Several payload dialects reach the pipeline: the store's row-change webhook
(INSERT/UPDATE/DELETE with record and old_record), direct calls from Stage 1
(DIRECT_CALL on the appointments table) and coordinated triggers carrying an
appointment_id plus a request_id. Each dialect has its own parser; anything
that none of them recognizes becomes an UnrecognizedEvent.
"""
from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .enums import ChangeType


class CoordinatedTrigger(BaseModel):
    kind: Literal["coordinated"] = "coordinated"
    appointment_id: str
    request_id: str


class TableChange(BaseModel):
    kind: Literal["table_change"] = "table_change"
    type: ChangeType
    table: str
    record: dict[str, Any] = Field(default_factory=dict)
    old_record: Optional[dict[str, Any]] = None
    source: Optional[str] = None

    def value(self, key: str) -> Any:
        return self.record.get(key)

    def old_value(self, key: str) -> Any:
        return (self.old_record or {}).get(key)


class UnrecognizedEvent(BaseModel):
    kind: Literal["unrecognized"] = "unrecognized"
    reason: str


IngressEvent = Union[CoordinatedTrigger, TableChange, UnrecognizedEvent]


def _parse_coordinated(payload: dict[str, Any]) -> CoordinatedTrigger | None:
    if not payload.get("appointment_id") or not payload.get("request_id"):
        return None
    return CoordinatedTrigger(
        appointment_id=str(payload["appointment_id"]),
        request_id=str(payload["request_id"]),
    )


def _parse_table_change(payload: dict[str, Any]) -> TableChange | None:
    record = payload.get("record")
    if "type" not in payload or not isinstance(record, dict):
        return None
    # Older webhook configurations put the table name inside the record.
    table = payload.get("table") or record.get("table")
    if not table:
        return None
    old_record = payload.get("old_record")
    try:
        return TableChange(
            type=payload["type"],
            table=table,
            record=record,
            old_record=old_record if isinstance(old_record, dict) else None,
            source=payload.get("source"),
        )
    except ValidationError:
        return None


_PARSERS = (_parse_coordinated, _parse_table_change)


def parse_event(payload: Any) -> IngressEvent:
    """Map a decoded JSON body onto one of the known payload dialects."""
    if not isinstance(payload, dict):
        return UnrecognizedEvent(reason="Payload is not a JSON object")
    for parser in _PARSERS:
        event = parser(payload)
        if event is not None:
            return event
    return UnrecognizedEvent(
        reason="Unknown payload format - expected coordinated trigger or table change payload"
    )
