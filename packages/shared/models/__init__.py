from .enums import (
    ALLOWED_TRANSITIONS,
    ChangeType,
    FallbackReason,
    FileKind,
    ProcessingStatus,
    UrgencyLevel,
    can_transition,
)
from .domain import (
    ClinicalContext,
    ClinicalSummaryPayload,
    ExtractedFile,
    FileExtractionResult,
    FileRef,
    PatientProfile,
    SanitizedSummary,
    StageResult,
    compute_age,
)
from .events import (
    CoordinatedTrigger,
    IngressEvent,
    TableChange,
    UnrecognizedEvent,
    parse_event,
)
