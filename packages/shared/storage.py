"""
Blob storage helpers for uploaded patient files.

Files are addressed by their stored path. Retrieval always goes through a
time-limited signed URL and a size-capped download, so the size ceiling is
enforced before any bytes reach the generative-AI service.
"""
from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import quote, unquote, urlparse

import requests

from packages.shared.config import PipelineSettings
from packages.shared.errors import BlobRetrievalError, ConfigurationError, OversizeFileError

logger = logging.getLogger(__name__)

_CHUNK_BYTES = 64 * 1024


def _too_large(size: int, max_bytes: int) -> OversizeFileError:
    return OversizeFileError(
        f"File too large: {size / 1024 / 1024:.1f}MB exceeds {max_bytes // (1024 * 1024)}MB limit"
    )


class BlobStore:
    """Signed-URL retrieval of stored blobs."""

    def __init__(self, session: requests.Session | None = None, timeout: float = 60.0):
        self.session = session or requests.Session()
        self.timeout = timeout

    def create_signed_url(self, path: str, expires_in: int) -> str:
        raise NotImplementedError

    def download(self, url: str, max_bytes: int) -> bytes:
        """Stream *url*, aborting as soon as the body exceeds *max_bytes*."""
        try:
            response = self.session.get(url, stream=True, timeout=self.timeout)
        except requests.RequestException as exc:
            raise BlobRetrievalError(f"Failed to download file: {exc}") from exc
        try:
            if response.status_code != 200:
                raise BlobRetrievalError(f"Failed to download file: HTTP {response.status_code}")
            declared = response.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise _too_large(int(declared), max_bytes)
            buf = bytearray()
            for chunk in response.iter_content(chunk_size=_CHUNK_BYTES):
                if not chunk:
                    continue
                buf.extend(chunk)
                if len(buf) > max_bytes:
                    raise _too_large(len(buf), max_bytes)
            return bytes(buf)
        finally:
            response.close()

    def fetch(self, path: str, *, max_bytes: int, expires_in: int) -> bytes:
        url = self.create_signed_url(path, expires_in)
        return self.download(url, max_bytes)


class SupabaseBlobStore(BlobStore):
    """Object store exposing `/storage/v1/object/sign/{bucket}/{path}`."""

    def __init__(self, base_url: str, service_key: str, bucket: str, **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
            "Content-Type": "application/json",
        }

    def create_signed_url(self, path: str, expires_in: int) -> str:
        endpoint = f"{self.base_url}/storage/v1/object/sign/{self.bucket}/{quote(path.lstrip('/'))}"
        try:
            response = self.session.post(
                endpoint,
                json={"expiresIn": expires_in},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise BlobRetrievalError(f"Failed to get signed URL: {exc}") from exc
        if response.status_code != 200:
            raise BlobRetrievalError(f"Failed to get signed URL: HTTP {response.status_code}")
        body = response.json() or {}
        signed = body.get("signedURL") or body.get("signedUrl")
        if not signed:
            raise BlobRetrievalError("Failed to get signed URL: empty response")
        if signed.startswith("http"):
            return signed
        return f"{self.base_url}/storage/v1{signed}"


class LocalBlobStore(BlobStore):
    """Disk-backed store rooted at DATA_DIR, for development and tests."""

    def __init__(self, root: Path, **kwargs):
        super().__init__(**kwargs)
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        root = self.root.resolve()
        target = (root / path.lstrip("/")).resolve()
        try:
            target.relative_to(root)
        except ValueError:
            raise BlobRetrievalError(f"Path escapes storage root: {path}")
        return target

    def create_signed_url(self, path: str, expires_in: int) -> str:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobRetrievalError(f"Failed to get signed URL: {path} not found")
        return target.as_uri()

    def download(self, url: str, max_bytes: int) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme != "file":
            return super().download(url, max_bytes)
        target = Path(unquote(parsed.path))
        size = target.stat().st_size
        if size > max_bytes:
            raise _too_large(size, max_bytes)
        return target.read_bytes()

    def save(self, path: str, data: bytes) -> Path:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return target


def build_blob_store(settings: PipelineSettings) -> BlobStore:
    if settings.storage_backend == "supabase":
        if not settings.storage_url or not settings.storage_service_key:
            raise ConfigurationError("STORAGE_URL and STORAGE_SERVICE_KEY are required for the supabase backend")
        return SupabaseBlobStore(settings.storage_url, settings.storage_service_key, settings.storage_bucket)
    if settings.storage_backend == "local":
        return LocalBlobStore(settings.data_dir)
    raise ConfigurationError(f"Unknown STORAGE_BACKEND: {settings.storage_backend}")
