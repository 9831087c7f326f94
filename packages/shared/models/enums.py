from enum import Enum


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    TRIGGERED = "triggered"
    PROCESSING = "processing"
    PROCESSING_FAILED = "processing_failed"
    READY_FOR_SUMMARY = "ready_for_summary"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)


# Transitions the pipeline itself may perform through compare-and-set.
# Operator overrides (manual re-trigger) bypass this table explicitly.
ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.PENDING: frozenset({ProcessingStatus.TRIGGERED, ProcessingStatus.PROCESSING}),
    ProcessingStatus.TRIGGERED: frozenset({ProcessingStatus.PROCESSING}),
    ProcessingStatus.PROCESSING: frozenset({
        ProcessingStatus.READY_FOR_SUMMARY,
        ProcessingStatus.PROCESSING_FAILED,
        ProcessingStatus.COMPLETED,
        ProcessingStatus.FAILED,
    }),
    ProcessingStatus.PROCESSING_FAILED: frozenset({ProcessingStatus.TRIGGERED}),
    ProcessingStatus.READY_FOR_SUMMARY: frozenset({ProcessingStatus.PROCESSING}),
    ProcessingStatus.COMPLETED: frozenset(),
    ProcessingStatus.FAILED: frozenset(),
}


def can_transition(current: ProcessingStatus, new: ProcessingStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


class FileKind(str, Enum):
    DOCUMENT = "document"
    IMAGE = "image"
    UNSUPPORTED = "unsupported"


class UrgencyLevel(str, Enum):
    ROUTINE = "routine"
    URGENT = "urgent"
    EMERGENCY = "emergency"


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    DIRECT_CALL = "DIRECT_CALL"


class FallbackReason(str, Enum):
    UPSTREAM_OVERLOADED = "upstream_overloaded"
    UNPARSEABLE_RESPONSE = "unparseable_response"
