# backend/bookingchat/services/media_service.py
import logging
import mimetypes
import re
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlparse
from uuid import uuid4

import httpx
from fastapi.concurrency import run_in_threadpool

from bookingchat.core import config
from bookingchat.core.exceptions import UploadFailed, ValidationFailed

logger = logging.getLogger(__name__)

MIME_PATTERN = re.compile(r"^[\w.+-]+/[\w.+-]+(\s*;.*)?$")
DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class UploadResult:
    url: str
    mime_type: str


# --- Attachment references ---

def is_voice(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.lower().startswith("audio/")


def validate_attachment(url: Optional[str], mime_type: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Checks the (url, type) pair a message refers to. Both or neither must be
    given; the url is absolute http(s) or a server-relative media path.
    """
    url = (url or "").strip() or None
    mime_type = (mime_type or "").strip() or None
    if url is None and mime_type is None:
        return None, None
    if url is None or mime_type is None:
        raise ValidationFailed("Attachment URL and attachment type must be provided together")

    parsed = urlparse(url)
    if parsed.scheme:
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationFailed("Attachment URL must be an http(s) URL")
    elif not url.startswith("/") or url.startswith("//"):
        raise ValidationFailed("Attachment URL must be absolute")

    if not MIME_PATTERN.match(mime_type):
        raise ValidationFailed("Attachment type must be a MIME type")
    return url, mime_type


def guess_mime_type(filename: str, declared: Optional[str] = None) -> str:
    if declared and MIME_PATTERN.match(declared) and declared != DEFAULT_MIME_TYPE:
        return declared
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed or declared or DEFAULT_MIME_TYPE


# --- Stores ---

class HttpMediaStore:
    """Forwards raw bytes to the external media service, which answers {url, mimeType}."""
    name = "http"

    def __init__(self, endpoint: str, token: str = "", timeout: float = config.MEDIA_STORE_TIMEOUT, transport=None):
        self.endpoint = endpoint
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.endpoint)

    async def store(self, data: bytes, filename: str, mime_type: str) -> UploadResult:
        if not self.is_configured():
            raise UploadFailed("Media store is not configured")

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        files = {"file": (filename, data, mime_type)}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.endpoint, files=files, headers=headers)
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("[MediaStore] upload of %s failed: %s", filename, e)
            raise UploadFailed() from e

        url = body.get("url") or body.get("secure_url")
        if not url:
            logger.error("[MediaStore] response without url for %s: %s", filename, body)
            raise UploadFailed("Media store returned no URL")
        return UploadResult(url=url, mime_type=body.get("mimeType") or mime_type)


class LocalMediaStore:
    """Development store: dated folders under UPLOAD_DIR, served at /media."""
    name = "local"

    def __init__(self, root: str = config.UPLOAD_DIR, url_prefix: str = config.MEDIA_URL_PREFIX):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    def is_configured(self) -> bool:
        return True

    def _write(self, data: bytes, extension: str) -> str:
        dated_folder = datetime.utcnow().strftime("%Y/%m/%d")
        folder = self.root / dated_folder
        folder.mkdir(parents=True, exist_ok=True)
        unique_filename = f"{uuid4().hex}{extension}"
        (folder / unique_filename).write_bytes(data)
        return f"{dated_folder}/{unique_filename}"

    async def store(self, data: bytes, filename: str, mime_type: str) -> UploadResult:
        extension = Path(filename or "").suffix.lower() or (mimetypes.guess_extension(mime_type) or "")
        try:
            relative = await run_in_threadpool(self._write, data, extension)
        except OSError as e:
            logger.error("[MediaStore] local write failed: %s", e)
            raise UploadFailed() from e
        return UploadResult(url=f"{self.url_prefix}/{relative}", mime_type=mime_type)


@lru_cache(maxsize=1)
def get_media_store():
    """FastAPI dependency; tests override it with an in-memory fake."""
    if config.MEDIA_BACKEND == "http":
        return HttpMediaStore(config.MEDIA_STORE_URL, config.MEDIA_STORE_TOKEN)
    return LocalMediaStore()


async def upload(store, data: bytes, filename: str, declared_type: Optional[str] = None) -> UploadResult:
    """
    Phase one of sending an attachment. Nothing is written to the chat here;
    the caller posts a message with the returned url/type afterwards.
    """
    if not data:
        raise ValidationFailed("No file provided")
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise ValidationFailed(f"File exceeds the {config.MAX_UPLOAD_BYTES // (1024 * 1024)} MB limit")

    mime_type = guess_mime_type(filename, declared_type)
    result = await store.store(data, filename or "upload", mime_type)
    logger.info("[MediaStore] stored %s (%s, %d bytes) at %s", filename, result.mime_type, len(data), result.url)
    return result
