"""Chunked SHA-256 fingerprinting for large video files.

Each chunk is read off the event loop so hashing a several-hundred-megabyte
file never blocks other tool calls. A fresh accumulator is created for every
file; a read failure surfaces as :class:`ReadError` and no digest is emitted.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from pathlib import Path

from .config import get_config
from .errors import ReadError

logger = logging.getLogger(__name__)

STORAGE_KEY_EXTENSION = ".mp4"


@dataclass(frozen=True)
class FingerprintProgress:
    """Progress snapshot; ``digest`` is set only on the final item."""

    bytes_read: int
    total_bytes: int
    digest: str | None = None

    @property
    def fraction(self) -> float:
        if self.total_bytes <= 0:
            return 1.0
        return min(self.bytes_read / self.total_bytes, 1.0)

    @property
    def done(self) -> bool:
        return self.digest is not None


def storage_key_for(fingerprint: str) -> str:
    """Content-addressed storage key for a fingerprint."""
    return f"{fingerprint}{STORAGE_KEY_EXTENSION}"


async def iter_fingerprint(
    path: str | Path,
    chunk_size: int | None = None,
) -> AsyncIterator[FingerprintProgress]:
    """Hash *path* chunk by chunk, yielding progress and finally the digest.

    Args:
        path: File to fingerprint.
        chunk_size: Bytes per read; defaults to ``hash_chunk_bytes`` from config.

    Raises:
        ReadError: If the file cannot be opened or a read fails.
    """
    size = chunk_size or get_config().hash_chunk_bytes
    p = Path(path)
    try:
        total = p.stat().st_size
        handle = await asyncio.to_thread(p.open, "rb")
    except OSError as exc:
        raise ReadError(f"Cannot open {p}: {exc}") from exc

    digest = hashlib.sha256()
    read = 0
    try:
        while True:
            try:
                chunk = await asyncio.to_thread(handle.read, size)
            except OSError as exc:
                raise ReadError(f"Read failed at byte {read} of {p}: {exc}") from exc
            if not chunk:
                break
            digest.update(chunk)
            read += len(chunk)
            yield FingerprintProgress(bytes_read=read, total_bytes=total)
    finally:
        handle.close()

    hex_digest = digest.hexdigest()
    logger.debug("Fingerprinted %s (%d bytes) → %s", p.name, read, hex_digest)
    yield FingerprintProgress(bytes_read=read, total_bytes=max(total, read), digest=hex_digest)


async def fingerprint_file(
    path: str | Path,
    on_progress: Callable[[float], None] | None = None,
    *,
    chunk_size: int | None = None,
) -> str:
    """Return the lowercase hex SHA-256 of *path*, reporting fractional progress.

    Raises:
        ReadError: If the file cannot be read to the end.
    """
    async for progress in iter_fingerprint(path, chunk_size):
        if on_progress is not None:
            on_progress(progress.fraction)
        if progress.done:
            return progress.digest
    raise ReadError(f"Fingerprinting {path} ended without a digest")
