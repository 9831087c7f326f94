"""
Error taxonomy shared by the ingress layer and both pipeline stages.

`status_code` is the HTTP-style status the ingress reports when the error ends
a request. `terminal` only matters for per-file extraction errors: a terminal
failure is recorded on the file and never retried automatically.
"""
from __future__ import annotations


class PipelineError(Exception):
    status_code = 500
    code = "pipeline_error"
    terminal = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(PipelineError):
    code = "configuration_error"
    terminal = True


class MalformedEventError(PipelineError):
    status_code = 200
    code = "malformed_event"


class LockConflictError(PipelineError):
    status_code = 409
    code = "lock_conflict"


class MissingInputError(PipelineError):
    status_code = 400
    code = "missing_input"


class InsufficientDataError(PipelineError):
    status_code = 400
    code = "insufficient_data"


class ResponseSchemaError(PipelineError):
    code = "response_schema"


# ── Per-file extraction ───────────────────────────────────────────────

class FileExtractionError(PipelineError):
    code = "file_extraction"


class UnsupportedFileTypeError(FileExtractionError):
    code = "unsupported_file_type"
    terminal = True


class OversizeFileError(FileExtractionError):
    code = "oversize_file"
    terminal = True


class FileNotReadyError(FileExtractionError):
    code = "file_not_ready"
    terminal = True


class BlobRetrievalError(FileExtractionError):
    code = "blob_retrieval"


# ── Generative-AI service ─────────────────────────────────────────────

class UpstreamError(PipelineError):
    code = "upstream_error"

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class UpstreamOverloadedError(UpstreamError):
    code = "upstream_overloaded"


class UpstreamProtocolError(UpstreamError):
    code = "upstream_protocol"
    terminal = True


class RetryExhaustedError(PipelineError):
    code = "retry_exhausted"

    def __init__(self, message: str, attempts: int, last_error: Exception | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error
