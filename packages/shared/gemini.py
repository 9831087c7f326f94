"""
Minimal REST client for the Gemini generative-AI API.

Three operations are consumed by the pipeline: resumable file upload with a
readiness poll (documents), inline-data analysis (images) and plain text
generation (summaries). All requests go through one `requests.Session`.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator

import requests

from packages.shared.config import PipelineSettings
from packages.shared.errors import (
    ConfigurationError,
    FileNotReadyError,
    UpstreamError,
    UpstreamOverloadedError,
    UpstreamProtocolError,
)

logger = logging.getLogger(__name__)

OVERLOADED_STATUSES = frozenset({429, 503})

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
]


@dataclass(frozen=True)
class GenerationConfig:
    temperature: float
    top_k: int
    top_p: float
    max_output_tokens: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "temperature": self.temperature,
            "topK": self.top_k,
            "topP": self.top_p,
            "maxOutputTokens": self.max_output_tokens,
        }


DOCUMENT_EXTRACTION_CONFIG = GenerationConfig(temperature=0.1, top_k=32, top_p=0.8, max_output_tokens=8192)
IMAGE_ANALYSIS_CONFIG = GenerationConfig(temperature=0.1, top_k=32, top_p=0.8, max_output_tokens=4096)
SUMMARY_CONFIG = GenerationConfig(temperature=0.1, top_k=40, top_p=0.8, max_output_tokens=2048)


@dataclass(frozen=True)
class UploadedFile:
    name: str  # e.g. "files/abc123"
    uri: str
    mime_type: str
    state: str = "PROCESSING"


def text_part(text: str) -> dict[str, Any]:
    return {"text": text}


def file_part(uploaded: UploadedFile) -> dict[str, Any]:
    return {"fileData": {"mimeType": uploaded.mime_type, "fileUri": uploaded.uri}}


def inline_part(mime_type: str, data_b64: str) -> dict[str, Any]:
    return {"inlineData": {"mimeType": mime_type, "data": data_b64}}


def _error_text(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return (response.text or "").strip()[:500]
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])[:500]
    return str(payload)[:500]


class GeminiClient:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://generativelanguage.googleapis.com",
        model: str = "gemini-2.0-flash-exp",
        timeout: float = 90.0,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> "GeminiClient":
        return cls(
            settings.gemini_api_key,
            base_url=settings.gemini_api_base_url,
            model=settings.gemini_model,
            timeout=settings.ai_request_timeout_seconds,
        )

    # ── plumbing ──────────────────────────────────────────────────────

    def _params(self) -> dict[str, str]:
        if not self.api_key:
            raise ConfigurationError("GEMINI_API_KEY is not configured")
        return {"key": self.api_key}

    def _check(self, response: requests.Response, action: str) -> None:
        if response.status_code in OVERLOADED_STATUSES:
            raise UpstreamOverloadedError(
                f"{action}: service overloaded ({response.status_code}) - {_error_text(response)}",
                status=response.status_code,
            )
        if not 200 <= response.status_code < 300:
            raise UpstreamProtocolError(
                f"{action} failed: {response.status_code} - {_error_text(response)}",
                status=response.status_code,
            )

    def _request(self, method: str, url: str, action: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, params=self._params(), **kwargs)
        except requests.RequestException as exc:
            raise UpstreamProtocolError(f"{action}: transport error - {exc}") from exc
        self._check(response, action)
        return response

    # ── file API ──────────────────────────────────────────────────────

    def upload_file(self, data: bytes, mime_type: str, display_name: str) -> UploadedFile:
        """Two-step resumable upload: open a session, then send bytes and finalize."""
        start = self._request(
            "POST",
            f"{self.base_url}/upload/v1beta/files",
            "Upload start",
            json={"file": {"displayName": display_name}},
            headers={
                "X-Goog-Upload-Protocol": "resumable",
                "X-Goog-Upload-Command": "start",
                "X-Goog-Upload-Header-Content-Length": str(len(data)),
                "X-Goog-Upload-Header-Content-Type": mime_type,
            },
        )
        upload_url = start.headers.get("X-Goog-Upload-URL")
        if not upload_url:
            raise UpstreamProtocolError("Upload start failed: no resumable upload URL returned")

        try:
            finished = self.session.post(
                upload_url,
                data=data,
                headers={
                    "Content-Type": mime_type,
                    "X-Goog-Upload-Protocol": "resumable",
                    "X-Goog-Upload-Command": "upload, finalize",
                    "X-Goog-Upload-Offset": "0",
                    "Content-Length": str(len(data)),
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise UpstreamProtocolError(f"File upload: transport error - {exc}") from exc
        self._check(finished, "File upload")

        info = (finished.json() or {}).get("file") or {}
        if not info.get("name") or not info.get("uri"):
            raise UpstreamProtocolError("File upload failed: response is missing file name or uri")
        return UploadedFile(
            name=info["name"],
            uri=info["uri"],
            mime_type=info.get("mimeType") or mime_type,
            state=info.get("state") or "PROCESSING",
        )

    def get_file_state(self, name: str) -> str:
        response = self._request("GET", f"{self.base_url}/v1beta/{name}", "File status")
        return (response.json() or {}).get("state") or "STATE_UNSPECIFIED"

    def wait_until_active(self, uploaded: UploadedFile, *, interval: float, timeout: float) -> UploadedFile:
        """Poll the file state at a fixed interval until ACTIVE or the wall-clock ceiling passes."""
        state = uploaded.state
        deadline = self._clock() + timeout
        while state == "PROCESSING" and self._clock() < deadline:
            self._sleep(interval)
            try:
                state = self.get_file_state(uploaded.name)
            except UpstreamError as exc:
                logger.warning(f"File status poll for {uploaded.name} failed, polling again: {exc}")
        if state != "ACTIVE":
            raise FileNotReadyError(f"File processing failed. State: {state}")
        return UploadedFile(name=uploaded.name, uri=uploaded.uri, mime_type=uploaded.mime_type, state=state)

    def delete_file(self, name: str) -> None:
        self._request("DELETE", f"{self.base_url}/v1beta/{name}", "File delete")

    @contextmanager
    def uploaded_file(self, data: bytes, mime_type: str, display_name: str) -> Iterator[UploadedFile]:
        """Upload *data* for the duration of the block; the remote copy is always deleted afterwards."""
        uploaded = self.upload_file(data, mime_type, display_name)
        try:
            yield uploaded
        finally:
            try:
                self.delete_file(uploaded.name)
                logger.debug(f"Deleted uploaded file {uploaded.name}")
            except Exception as exc:
                logger.warning(f"Failed to delete uploaded file {uploaded.name} (not critical): {exc}")

    # ── generation ────────────────────────────────────────────────────

    def generate_content(self, parts: list[dict[str, Any]], config: GenerationConfig) -> str:
        response = self._request(
            "POST",
            f"{self.base_url}/v1beta/models/{self.model}:generateContent",
            "generateContent",
            json={
                "contents": [{"parts": parts}],
                "generationConfig": config.to_dict(),
                "safetySettings": SAFETY_SETTINGS,
            },
        )
        return extract_candidate_text(response.json())


def extract_candidate_text(payload: Any) -> str:
    candidates = (payload or {}).get("candidates") if isinstance(payload, dict) else None
    if not candidates:
        blocked = ((payload or {}).get("promptFeedback") or {}).get("blockReason") if isinstance(payload, dict) else None
        if blocked:
            raise UpstreamProtocolError(f"Prompt blocked by safety filter: {blocked}")
        raise UpstreamProtocolError("Invalid response from Gemini: no candidates")
    content = candidates[0].get("content") or {}
    texts = [p["text"] for p in content.get("parts") or [] if isinstance(p, dict) and isinstance(p.get("text"), str)]
    if not texts:
        raise UpstreamProtocolError("Invalid response from Gemini: candidate has no text")
    return "".join(texts).strip()
