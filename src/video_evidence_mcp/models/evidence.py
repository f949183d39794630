"""Evidence session models — sessions, turns, timeline events and bookmarks.

All models are frozen; the state reducer produces new instances with
``model_copy(update=...)`` rather than mutating in place.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

NEW_SESSION_ID = "new-session"
LOCAL_REFERENCE_PREFIX = "file://"

SessionStatus = Literal["idle", "uploading", "analyzing", "ready", "error"]
TurnRole = Literal["user", "assistant"]
TurnState = Literal["pending", "resolved", "failed"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimelineEvent(BaseModel):
    """One time-ranged finding. Identity is structural only."""

    model_config = ConfigDict(frozen=True)

    from_time: float = Field(ge=0)
    to_time: float = Field(ge=0)
    summary: str = "Event Detected"
    confidence: float = Field(default=1.0, ge=0, le=1)

    @model_validator(mode="after")
    def _ordered(self) -> TimelineEvent:
        if self.to_time < self.from_time:
            raise ValueError("to_time must not precede from_time")
        return self


class Findings(BaseModel):
    """The event batch produced by one assistant turn."""

    model_config = ConfigDict(frozen=True)

    summary: str = ""
    events: tuple[TimelineEvent, ...] = ()


class Turn(BaseModel):
    """One message in the conversation log."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: TurnRole
    text: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    state: TurnState = "resolved"
    findings: Findings | None = None

    @property
    def pending(self) -> bool:
        return self.state == "pending"


class EvidenceSession(BaseModel):
    """The single mutable-by-replacement record for one video investigation."""

    model_config = ConfigDict(frozen=True)

    id: str = NEW_SESSION_ID
    status: SessionStatus = "idle"
    video_reference: str | None = None
    video_name: str = ""
    fingerprint: str | None = None
    storage_key: str | None = None
    source_path: str | None = None
    source_signature: str | None = None
    model: str = ""
    events: tuple[TimelineEvent, ...] = ()
    conversation: tuple[Turn, ...] = ()
    last_error: str = ""

    @model_validator(mode="after")
    def _key_follows_fingerprint(self) -> EvidenceSession:
        if (self.fingerprint is None) != (self.storage_key is None):
            raise ValueError("storage_key must be set if and only if fingerprint is set")
        return self

    @property
    def persisted(self) -> bool:
        return self.id != NEW_SESSION_ID

    @property
    def pending_turn(self) -> Turn | None:
        return next((t for t in self.conversation if t.pending), None)

    @property
    def has_durable_video(self) -> bool:
        """True once the video is stored and a remote reference is known."""
        ref = self.video_reference or ""
        return self.storage_key is not None and bool(ref) and not ref.startswith(LOCAL_REFERENCE_PREFIX)


class Bookmark(BaseModel):
    """A timeline event the investigator saved, with its persisted id."""

    model_config = ConfigDict(frozen=True)

    id: str
    from_time: float
    to_time: float
    summary: str
    confidence: float = 1.0
    saved_at: datetime | None = None


class SessionRecord(BaseModel):
    """Persisted session header (one row per investigation)."""

    id: str
    owner_id: str
    video_name: str = ""
    fingerprint: str | None = None
    storage_key: str | None = None
    video_reference: str | None = None
    model: str = ""
    title: str = "New Investigation"
    status: SessionStatus = "idle"
    created_at: datetime = Field(default_factory=utcnow)


# ── Tool output models ──────────────────────────────────────────────────────


class TimelineEntry(BaseModel):
    """A displayed event with its position and saved flag."""

    index: int
    from_time: float
    to_time: float
    timecode: str
    summary: str
    confidence: float
    saved: bool = False


class AskResponse(BaseModel):
    """Output schema for evidence_ask."""

    session_id: str
    status: SessionStatus
    answer: str
    turn_state: TurnState
    new_events: list[TimelineEntry] = Field(default_factory=list)
    total_events: int = 0
    fingerprint: str | None = None
    notices: list[str] = Field(default_factory=list)


class BookmarkToggle(BaseModel):
    """Output schema for evidence_toggle_bookmark."""

    session_id: str
    index: int
    saved: bool
    bookmark_id: str | None = None
