"""Structured error handling — engine exceptions, categories, and tool error model."""

from __future__ import annotations

from enum import Enum

import httpx
from pydantic import BaseModel


class EvidenceError(Exception):
    """Base class for every failure raised by the evidence engine."""


class ReadError(EvidenceError):
    """The video file could not be read while fingerprinting."""


class MissingEvidence(EvidenceError):
    """A prompt was submitted without a file or a previously uploaded video."""


class UploadFailure(EvidenceError):
    """The storage collaborator could not durably store the video."""


class InferenceFailure(EvidenceError):
    """The inference call failed or returned an unparseable response."""


class PersistenceFailure(EvidenceError):
    """A session, turn or bookmark read/write failed."""


class SessionBusy(EvidenceError):
    """A turn is still pending for this session."""


class SessionNotFound(EvidenceError):
    """No persisted or active session matches the given id."""


class IdentityRequired(EvidenceError):
    """No authenticated identity is configured."""


class InvalidTransition(EvidenceError):
    """A lifecycle event is not allowed from the session's current status."""


class ErrorCategory(str, Enum):
    """Categories of errors for diagnostics."""

    READ_ERROR = "READ_ERROR"
    MISSING_EVIDENCE = "MISSING_EVIDENCE"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    INFERENCE_FAILED = "INFERENCE_FAILED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    SESSION_BUSY = "SESSION_BUSY"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    IDENTITY_REQUIRED = "IDENTITY_REQUIRED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    API_PERMISSION_DENIED = "API_PERMISSION_DENIED"
    API_QUOTA_EXCEEDED = "API_QUOTA_EXCEEDED"
    API_INVALID_ARGUMENT = "API_INVALID_ARGUMENT"
    NETWORK_ERROR = "NETWORK_ERROR"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    FILE_UNSUPPORTED = "FILE_UNSUPPORTED"
    UNKNOWN = "UNKNOWN"


class ToolError(BaseModel):
    """Structured error returned from any tool."""

    error: str
    category: str
    hint: str
    retryable: bool = False
    retry_after_seconds: int | None = None


_ENGINE_CATEGORIES: tuple[tuple[type[Exception], ErrorCategory, str], ...] = (
    (ReadError, ErrorCategory.READ_ERROR, "Video file could not be read — check the path and permissions"),
    (MissingEvidence, ErrorCategory.MISSING_EVIDENCE, "Attach a video file with file_path or continue an uploaded session"),
    (UploadFailure, ErrorCategory.UPLOAD_FAILED, "Upload failed — resubmit the prompt to retry the upload"),
    (InferenceFailure, ErrorCategory.INFERENCE_FAILED, "Analysis failed — resubmit the prompt; the video will not be re-uploaded"),
    (PersistenceFailure, ErrorCategory.PERSISTENCE_FAILED, "Saved data could not be read or written — check EVIDENCE_DB_PATH"),
    (SessionBusy, ErrorCategory.SESSION_BUSY, "Wait for the pending answer before asking another question"),
    (SessionNotFound, ErrorCategory.SESSION_NOT_FOUND, "Session not found — list sessions or start a new one with evidence_ask"),
    (IdentityRequired, ErrorCategory.IDENTITY_REQUIRED, "Set EVIDENCE_USER_ID to identify the investigator"),
    (InvalidTransition, ErrorCategory.INVALID_TRANSITION, "Operation not allowed in the session's current state"),
)


def categorize_error(error: Exception) -> tuple[ErrorCategory, str]:
    """Map an exception to an ErrorCategory + human-readable hint."""
    for exc_type, category, hint in _ENGINE_CATEGORIES:
        if isinstance(error, exc_type):
            return category, hint

    if isinstance(error, FileNotFoundError):
        return ErrorCategory.FILE_NOT_FOUND, "File not found — check the path"
    if isinstance(error, (TimeoutError, httpx.TimeoutException, httpx.NetworkError)):
        return ErrorCategory.NETWORK_ERROR, "Network problem — try again or check connectivity"

    s = str(error).lower()
    if "unsupported video extension" in s:
        return (
            ErrorCategory.FILE_UNSUPPORTED,
            "File extension not supported — use mp4, webm, mov, avi, mkv, mpeg, wmv, or 3gpp",
        )
    if "403" in s or "permission" in s:
        return ErrorCategory.API_PERMISSION_DENIED, "API key lacks permission for this operation"
    if "429" in s or "quota" in s or "resource_exhausted" in s:
        return ErrorCategory.API_QUOTA_EXCEEDED, "Rate limit hit — wait and retry"
    if "400" in s or "not supported" in s:
        return ErrorCategory.API_INVALID_ARGUMENT, "Bad request — check input format and model id"
    if "timeout" in s or "timed out" in s:
        return ErrorCategory.NETWORK_ERROR, "Request timed out — try again or check connectivity"

    return ErrorCategory.UNKNOWN, str(error)


def is_missing_reference(error: BaseException) -> bool:
    """True when the API reports that a stored file no longer exists."""
    s = str(error).lower()
    return "404" in s or "not_found" in s or "may not exist" in s


def make_tool_error(error: Exception) -> dict:
    """Create a serialisable ToolError dict from an exception."""
    cat, hint = categorize_error(error)
    retryable = cat in {
        ErrorCategory.UPLOAD_FAILED,
        ErrorCategory.INFERENCE_FAILED,
        ErrorCategory.PERSISTENCE_FAILED,
        ErrorCategory.SESSION_BUSY,
        ErrorCategory.API_QUOTA_EXCEEDED,
        ErrorCategory.NETWORK_ERROR,
    }
    return ToolError(
        error=str(error),
        category=cat.value,
        hint=hint,
        retryable=retryable,
        retry_after_seconds=60 if cat == ErrorCategory.API_QUOTA_EXCEEDED else None,
    ).model_dump(mode="json")
