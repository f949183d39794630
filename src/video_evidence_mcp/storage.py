"""Storage collaborator — content-addressed video upload via the Gemini File API.

``put(key, path)`` stores the file under its content-derived key and returns
a durable ``file_uri`` usable for inference. An on-disk cache keyed by the
storage key lets identical content skip re-upload while the remote file is
still ACTIVE.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from google.genai import types

from .client import GeminiClient
from .config import get_config
from .errors import UploadFailure
from .retry import with_retry

logger = logging.getLogger(__name__)

SUPPORTED_VIDEO_EXTENSIONS: dict[str, str] = {
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".mpeg": "video/mpeg",
    ".wmv": "video/x-ms-wmv",
    ".3gpp": "video/3gpp",
}


class EvidenceStorage(Protocol):
    """Durable, idempotent object storage for evidence files."""

    async def put(self, key: str, path: Path) -> str: ...


def video_mime_type(path: Path) -> str:
    """Return MIME type for a video file, or raise ValueError if unsupported."""
    ext = path.suffix.lower()
    mime = SUPPORTED_VIDEO_EXTENSIONS.get(ext)
    if not mime:
        allowed = ", ".join(sorted(SUPPORTED_VIDEO_EXTENSIONS))
        raise ValueError(f"Unsupported video extension '{ext}'. Supported: {allowed}")
    return mime


def validate_video_path(file_path: str) -> Path:
    """Resolve *file_path*, checking it exists and has a supported extension."""
    p = Path(file_path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"Video file not found: {file_path}")
    if not p.is_file():
        raise ValueError(f"Not a file: {file_path}")
    video_mime_type(p)
    return p


async def wait_for_active(
    client, file_name: str, *, timeout: float = 120, interval: float = 2.0
) -> None:
    """Poll the Files API until *file_name* is ACTIVE.

    Raises:
        RuntimeError: If the file enters FAILED state.
        TimeoutError: If the file doesn't become ACTIVE within timeout.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        info = await client.aio.files.get(name=file_name)
        state = getattr(info.state, "name", info.state)
        if state == "ACTIVE":
            return
        if state == "FAILED":
            raise RuntimeError(f"File processing failed: {file_name}")
        if loop.time() > deadline:
            raise TimeoutError(f"File {file_name} not active after {timeout}s (state: {state})")
        await asyncio.sleep(interval)


class GeminiFileStorage:
    """Uploads evidence to the Gemini File API, deduplicated by storage key."""

    def __init__(self, cache_dir: Path | None = None) -> None:
        self._cache_dir = cache_dir

    @property
    def cache_dir(self) -> Path:
        d = self._cache_dir or Path(get_config().cache_dir) / "uploads"
        d.mkdir(parents=True, exist_ok=True)
        return d

    def _cache_file(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def load_cached(self, key: str) -> dict | None:
        """Cached upload entry for *key*, or None if missing or unreadable."""
        f = self._cache_file(key)
        if not f.exists():
            return None
        try:
            return json.loads(f.read_text())
        except (json.JSONDecodeError, OSError):
            return None

    def save_cached(self, key: str, file_uri: str, file_name: str) -> None:
        self._cache_file(key).write_text(json.dumps({
            "file_uri": file_uri,
            "file_name": file_name,
            "uploaded_at": datetime.now(timezone.utc).isoformat(),
        }))

    async def put(self, key: str, path: Path) -> str:
        """Store *path* under *key* and return its durable reference.

        Raises:
            UploadFailure: If the upload or activation wait fails.
        """
        try:
            client = GeminiClient.get()
            cached = self.load_cached(key)
            if cached:
                try:
                    await wait_for_active(client, cached["file_name"], timeout=10)
                    logger.info("Upload cache hit for %s → %s", key, cached["file_uri"])
                    return cached["file_uri"]
                except Exception as exc:
                    logger.info("Stale upload cache for %s (%s), re-uploading", key, exc)
                    self._cache_file(key).unlink(missing_ok=True)

            mime = video_mime_type(path)
            uploaded = await with_retry(
                lambda: client.aio.files.upload(
                    file=path,
                    config=types.UploadFileConfig(mime_type=mime, display_name=key),
                ),
                label=f"upload[{key}]",
            )
            logger.info("Uploaded %s as %s → %s", path.name, key, uploaded.uri)
            await wait_for_active(
                client, uploaded.name, timeout=get_config().upload_timeout_seconds,
            )
        except UploadFailure:
            raise
        except Exception as exc:
            raise UploadFailure(f"Upload of {key} failed: {exc}") from exc

        self.save_cached(key, uploaded.uri, uploaded.name)
        return uploaded.uri
