"""Evidence session lifecycle as a pure reducer.

``reduce(session, event)`` returns a new :class:`EvidenceSession`; it never
mutates its input and performs no I/O. The engine in ``pipeline.py`` owns
the current session and is the only caller.

Lifecycle::

    idle ──attach──▶ uploading ──stored──▶ analyzing ──ok──▶ ready
                         │                     │               │
                         └──fail──▶ error ◀─fail┘   follow-up ◀┘
                                      │
                      retry the failed stage only

Any state returns to ``idle`` on :class:`SessionReset`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from .errors import InvalidTransition, SessionBusy
from .fingerprint import storage_key_for
from .models.evidence import EvidenceSession, Findings, TimelineEvent, Turn

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionReset:
    """Start over: clears evidence, events and conversation."""


@dataclass(frozen=True)
class SessionRestored:
    """Replace the record with one rebuilt from persistence."""

    session: EvidenceSession


@dataclass(frozen=True)
class SessionPersisted:
    session_id: str


@dataclass(frozen=True)
class EvidenceAttached:
    """A new file was hashed and is about to be stored."""

    fingerprint: str
    video_name: str
    local_reference: str
    source_path: str | None = None
    source_signature: str | None = None


@dataclass(frozen=True)
class UploadRetried:
    """Re-attempt a failed upload without re-hashing."""


@dataclass(frozen=True)
class UploadCompleted:
    reference: str


@dataclass(frozen=True)
class UploadFailed:
    message: str


@dataclass(frozen=True)
class AnalysisRequested:
    """Follow-up prompt (or retry) against an already stored video."""


@dataclass(frozen=True)
class AnalysisCompleted:
    events: tuple[TimelineEvent, ...] = ()


@dataclass(frozen=True)
class AnalysisFailed:
    """Analysis failed; ``reference_expired`` drops a stored reference the API no longer has."""

    message: str
    reference_expired: bool = False


@dataclass(frozen=True)
class PromptSubmitted:
    user_turn: Turn
    pending_turn: Turn
    model: str = ""


@dataclass(frozen=True)
class TurnResolved:
    turn_id: str
    text: str
    findings: Findings | None = None


@dataclass(frozen=True)
class TurnFailed:
    turn_id: str
    message: str


SessionEvent = (
    SessionReset | SessionRestored | SessionPersisted | EvidenceAttached | UploadRetried
    | UploadCompleted | UploadFailed | AnalysisRequested | AnalysisCompleted | AnalysisFailed
    | PromptSubmitted | TurnResolved | TurnFailed
)


def _require(session: EvidenceSession, event: object, *allowed: str) -> None:
    if session.status not in allowed:
        raise InvalidTransition(
            f"{type(event).__name__} not allowed while session is {session.status!r}"
        )


def _reset(session: EvidenceSession, event: SessionReset) -> EvidenceSession:
    return EvidenceSession()


def _restored(session: EvidenceSession, event: SessionRestored) -> EvidenceSession:
    return event.session


def _persisted(session: EvidenceSession, event: SessionPersisted) -> EvidenceSession:
    return session.model_copy(update={"id": event.session_id})


def _attached(session: EvidenceSession, event: EvidenceAttached) -> EvidenceSession:
    _require(session, event, "idle", "ready", "error")
    return session.model_copy(update={
        "status": "uploading",
        "fingerprint": event.fingerprint,
        "storage_key": storage_key_for(event.fingerprint),
        "video_name": event.video_name,
        "video_reference": event.local_reference,
        "source_path": event.source_path,
        "source_signature": event.source_signature,
        "last_error": "",
    })


def _upload_retried(session: EvidenceSession, event: UploadRetried) -> EvidenceSession:
    _require(session, event, "error")
    if session.storage_key is None:
        raise InvalidTransition("Cannot retry an upload before evidence is attached")
    if session.has_durable_video:
        raise InvalidTransition("Video is already stored; request analysis instead")
    return session.model_copy(update={"status": "uploading", "last_error": ""})


def _upload_completed(session: EvidenceSession, event: UploadCompleted) -> EvidenceSession:
    _require(session, event, "uploading")
    return session.model_copy(update={"status": "analyzing", "video_reference": event.reference})


def _upload_failed(session: EvidenceSession, event: UploadFailed) -> EvidenceSession:
    _require(session, event, "uploading")
    return session.model_copy(update={"status": "error", "last_error": event.message})


def _analysis_requested(session: EvidenceSession, event: AnalysisRequested) -> EvidenceSession:
    _require(session, event, "ready", "error")
    if not session.has_durable_video:
        raise InvalidTransition("Analysis requires a stored video")
    return session.model_copy(update={"status": "analyzing", "last_error": ""})


def _analysis_completed(session: EvidenceSession, event: AnalysisCompleted) -> EvidenceSession:
    _require(session, event, "analyzing")
    return session.model_copy(update={
        "status": "ready",
        "events": session.events + tuple(event.events),
    })


def _analysis_failed(session: EvidenceSession, event: AnalysisFailed) -> EvidenceSession:
    _require(session, event, "analyzing")
    update = {"status": "error", "last_error": event.message}
    if event.reference_expired:
        update["video_reference"] = None
    return session.model_copy(update=update)


def _prompt_submitted(session: EvidenceSession, event: PromptSubmitted) -> EvidenceSession:
    if session.pending_turn is not None:
        raise SessionBusy("A previous prompt is still being answered")
    if event.user_turn.role != "user" or not event.pending_turn.pending:
        raise InvalidTransition("PromptSubmitted needs a user turn and a pending assistant turn")
    update: dict = {"conversation": session.conversation + (event.user_turn, event.pending_turn)}
    if event.model:
        update["model"] = event.model
    return session.model_copy(update=update)


def _replace_pending(session: EvidenceSession, turn_id: str, **changes) -> EvidenceSession:
    turns = list(session.conversation)
    for i, turn in enumerate(turns):
        if turn.id == turn_id:
            if not turn.pending:
                raise InvalidTransition(f"Turn {turn_id} is already {turn.state}")
            turns[i] = turn.model_copy(update=changes)
            return session.model_copy(update={"conversation": tuple(turns)})
    raise InvalidTransition(f"No turn with id {turn_id}")


def _turn_resolved(session: EvidenceSession, event: TurnResolved) -> EvidenceSession:
    return _replace_pending(
        session, event.turn_id, state="resolved", text=event.text, findings=event.findings,
    )


def _turn_failed(session: EvidenceSession, event: TurnFailed) -> EvidenceSession:
    return _replace_pending(session, event.turn_id, state="failed", text=event.message)


_HANDLERS: dict[type, Callable[[EvidenceSession, object], EvidenceSession]] = {
    SessionReset: _reset,
    SessionRestored: _restored,
    SessionPersisted: _persisted,
    EvidenceAttached: _attached,
    UploadRetried: _upload_retried,
    UploadCompleted: _upload_completed,
    UploadFailed: _upload_failed,
    AnalysisRequested: _analysis_requested,
    AnalysisCompleted: _analysis_completed,
    AnalysisFailed: _analysis_failed,
    PromptSubmitted: _prompt_submitted,
    TurnResolved: _turn_resolved,
    TurnFailed: _turn_failed,
}


def reduce(session: EvidenceSession, event: SessionEvent) -> EvidenceSession:
    """Apply one lifecycle event and return the resulting session.

    Raises:
        InvalidTransition: If the event is not allowed from the current status.
        SessionBusy: If a prompt is submitted while another turn is pending.
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise InvalidTransition(f"Unknown session event {type(event).__name__}")
    updated = handler(session, event)
    if updated.status != session.status:
        logger.debug("Session %s: %s → %s", updated.id, session.status, updated.status)
    return updated
