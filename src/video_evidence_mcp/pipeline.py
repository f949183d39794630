"""Evidence engine — drives the session lifecycle for each submitted prompt.

The engine owns the current :class:`EvidenceSession` and replaces it only
through :func:`state.reduce`. One prompt is in flight at a time: the pending
check and the turn dispatch happen with no suspension point in between, so
two submissions can never interleave on the event loop.

A reset bumps ``generation``; work started under an older generation keeps
running but its results are dropped instead of being applied.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .config import get_config
from .errors import (
    EvidenceError,
    InferenceFailure,
    MissingEvidence,
    PersistenceFailure,
    ReadError,
    SessionBusy,
    SessionNotFound,
    UploadFailure,
    is_missing_reference,
)
from .findings import parse_findings
from .fingerprint import fingerprint_file
from .inference import EvidenceInference, InferenceRequest, resolve_model
from .models.evidence import EvidenceSession, Findings, TimelineEvent, Turn
from .persistence import EvidenceDB
from .state import (
    AnalysisCompleted,
    AnalysisFailed,
    AnalysisRequested,
    EvidenceAttached,
    PromptSubmitted,
    SessionEvent,
    SessionPersisted,
    SessionReset,
    SessionRestored,
    TurnFailed,
    TurnResolved,
    UploadCompleted,
    UploadFailed,
    UploadRetried,
    reduce,
)
from .storage import EvidenceStorage, validate_video_path

logger = logging.getLogger(__name__)


class _Superseded(Exception):
    """The session was reset while this submission was in flight."""


@dataclass
class SubmitResult:
    """Outcome of one prompt submission."""

    turn: Turn
    session: EvidenceSession
    new_events: tuple[TimelineEvent, ...] = ()
    notices: list[str] = field(default_factory=list)
    stale: bool = False


def _turn_id() -> str:
    return uuid.uuid4().hex[:12]


def file_signature(path: Path) -> str:
    """Cheap identity for a file selection: resolved path, size and mtime."""
    try:
        st = path.stat()
    except OSError as exc:
        raise ReadError(f"Cannot stat {path}: {exc}") from exc
    return f"{path}|{st.st_size}|{st.st_mtime_ns}"


class EvidenceEngine:
    """Owns one evidence session and runs prompts against it.

    Args:
        storage: Storage collaborator for uploads.
        inference: Inference collaborator for analysis.
        db: Optional persistence collaborator; when set, ``owner_id`` is required.
        owner_id: Identity that owns persisted sessions.
        on_progress: Called with fractional fingerprint progress.
    """

    def __init__(
        self,
        *,
        storage: EvidenceStorage,
        inference: EvidenceInference,
        db: EvidenceDB | None = None,
        owner_id: str | None = None,
        on_progress: Callable[[float], None] | None = None,
    ) -> None:
        if db is not None and not owner_id:
            raise ValueError("owner_id is required when persistence is enabled")
        self._storage = storage
        self._inference = inference
        self._db = db
        self._owner_id = owner_id
        self._on_progress = on_progress
        self._session = EvidenceSession()
        self._generation = 0
        self.fingerprint_progress = 0.0

    @property
    def session(self) -> EvidenceSession:
        return self._session

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def db(self) -> EvidenceDB | None:
        return self._db

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    def dispatch(self, event: SessionEvent) -> EvidenceSession:
        """Apply *event* to the current session and store the result."""
        self._session = reduce(self._session, event)
        return self._session

    def reset(self) -> EvidenceSession:
        """Start a new, empty session; in-flight results are discarded."""
        self._generation += 1
        self.fingerprint_progress = 0.0
        logger.info("Session reset (generation %d)", self._generation)
        return self.dispatch(SessionReset())

    async def activate(self, session_id: str) -> EvidenceSession:
        """Load a persisted session and its conversation as the current session.

        Raises:
            SessionNotFound: If no such session exists for this owner.
            PersistenceFailure: If the session or its turns cannot be read.
        """
        if self._db is None:
            raise SessionNotFound("Persistence is not configured")
        record = await self._db.load_session(self._owner_id, session_id)
        if record is None:
            raise SessionNotFound(f"Session {session_id} not found")
        turns = await self._db.list_turns(self._owner_id, session_id)

        events: list[TimelineEvent] = []
        for turn in turns:
            if turn.role == "assistant" and turn.findings is not None:
                events.extend(turn.findings.events)
        restored = EvidenceSession(
            id=record.id,
            video_name=record.video_name,
            fingerprint=record.fingerprint,
            storage_key=record.storage_key,
            video_reference=record.video_reference,
            model=record.model,
            events=tuple(events),
            conversation=tuple(t for t in turns if not t.pending),
        )
        if restored.has_durable_video:
            status = "ready"
        elif restored.fingerprint is not None:
            status = "error"
        else:
            status = "idle"
        self._generation += 1
        logger.info("Activated session %s (%d turns, %d events)", session_id, len(turns), len(events))
        return self.dispatch(SessionRestored(restored.model_copy(update={"status": status})))

    # ── submission ──────────────────────────────────────────────────────────

    def _can_resume(self) -> bool:
        s = self._session
        return s.has_durable_video or (s.storage_key is not None and s.source_path is not None)

    def _check(self, generation: int) -> None:
        if generation != self._generation:
            raise _Superseded()

    def _progress(self, fraction: float) -> None:
        self.fingerprint_progress = fraction
        if self._on_progress is not None:
            self._on_progress(fraction)

    async def submit(
        self,
        prompt: str,
        file_path: str | None = None,
        model_id: str | None = None,
    ) -> SubmitResult:
        """Ask a question about the session's video.

        Validates before touching state, appends the user turn and a pending
        assistant turn, runs whichever lifecycle stages are still missing, and
        resolves (or fails) the pending turn by id.

        Raises:
            MissingEvidence: Empty prompt, or no file and nothing uploaded yet.
            SessionBusy: A previous prompt has not been answered yet.
            FileNotFoundError, ValueError: Bad file path or unsupported model.
        """
        text = (prompt or "").strip()
        if not text:
            raise MissingEvidence("Prompt must not be empty")
        if self._session.pending_turn is not None:
            raise SessionBusy("A previous prompt is still being answered")
        model = resolve_model(model_id)
        source = validate_video_path(file_path) if file_path else None
        if source is None and not self._can_resume():
            raise MissingEvidence("Attach a video file before asking about it")

        generation = self._generation
        user_turn = Turn(id=_turn_id(), role="user", text=text)
        pending = Turn(id=_turn_id(), role="assistant", state="pending")
        self.dispatch(PromptSubmitted(user_turn=user_turn, pending_turn=pending, model=model))

        notices: list[str] = []
        new_events: tuple[TimelineEvent, ...] = ()
        try:
            try:
                findings = await self._run_stages(text, source, model, generation, notices)
            except EvidenceError as exc:
                self._check(generation)
                logger.warning("Prompt failed for session %s: %s", self._session.id, exc)
                self.dispatch(TurnFailed(turn_id=pending.id, message=f"Analysis failed: {exc}"))
            else:
                new_events = findings.events
                answer = findings.summary or f"Found {len(new_events)} event(s)."
                self.dispatch(AnalysisCompleted(events=new_events))
                self.dispatch(TurnResolved(turn_id=pending.id, text=answer, findings=findings))

            final = self._find_turn(pending.id)
            await self._persist_exchange(user_turn, final, text, generation, notices)
        except _Superseded:
            logger.info("Discarding result of superseded submission (generation %d)", generation)
            return SubmitResult(turn=pending, session=self._session, notices=notices, stale=True)

        return SubmitResult(
            turn=final, session=self._session, new_events=new_events, notices=notices,
        )

    def _find_turn(self, turn_id: str) -> Turn:
        return next(t for t in self._session.conversation if t.id == turn_id)

    async def _run_stages(
        self,
        prompt: str,
        source: Path | None,
        model: str,
        generation: int,
        notices: list[str],
    ) -> Findings:
        if source is not None:
            await self._attach(source, generation)

        s = self._session
        if s.status == "error" and not s.has_durable_video:
            self.dispatch(UploadRetried())
        if self._session.status == "uploading":
            await self._upload(generation, notices)
        else:
            self.dispatch(AnalysisRequested())
        return await self._analyze(prompt, model, generation)

    async def _attach(self, source: Path, generation: int) -> None:
        s = self._session
        signature = file_signature(source)
        if signature == s.source_signature and s.storage_key is not None:
            logger.debug("Same file re-selected, skipping fingerprint")
            return
        digest = await fingerprint_file(source, self._progress)
        self._check(generation)
        if digest == s.fingerprint and self._session.has_durable_video:
            logger.info("Attached file matches stored evidence %s, no upload needed", s.storage_key)
            return
        self.dispatch(EvidenceAttached(
            fingerprint=digest,
            video_name=source.name,
            local_reference=source.as_uri(),
            source_path=str(source),
            source_signature=signature,
        ))

    async def _upload(self, generation: int, notices: list[str]) -> None:
        s = self._session
        try:
            reference = await self._storage.put(s.storage_key, Path(s.source_path))
        except Exception as exc:
            self._check(generation)
            failure = exc if isinstance(exc, UploadFailure) else UploadFailure(str(exc))
            self.dispatch(UploadFailed(message=str(failure)))
            raise failure from exc
        self._check(generation)
        self.dispatch(UploadCompleted(reference=reference))
        logger.info("Evidence %s stored → %s", s.storage_key, reference)

    async def _analyze(self, prompt: str, model: str, generation: int) -> Findings:
        request = InferenceRequest(
            evidence_reference=self._session.video_reference,
            prompt=prompt,
            model_id=model,
        )
        try:
            raw = await self._inference.analyze(request)
            findings = parse_findings(raw, get_config().fallback_confidence)
        except Exception as exc:
            self._check(generation)
            failure = exc if isinstance(exc, InferenceFailure) else InferenceFailure(str(exc))
            cause = exc.__cause__ if isinstance(exc, InferenceFailure) else exc
            expired = cause is not None and is_missing_reference(cause)
            if expired:
                logger.info("Stored evidence %s has expired; it will be uploaded again", self._session.storage_key)
            self.dispatch(AnalysisFailed(message=str(failure), reference_expired=expired))
            raise failure from exc
        self._check(generation)
        return findings

    async def _persist_exchange(
        self,
        user_turn: Turn,
        final_turn: Turn,
        title: str,
        generation: int,
        notices: list[str],
    ) -> None:
        """Write the session header and both turns; failures become notices."""
        if self._db is None:
            return
        try:
            if self._session.persisted:
                await self._db.update_session(self._owner_id, self._session, title=title)
            else:
                sid = await self._db.create_session(self._owner_id, self._session, title=title)
                self._check(generation)
                self.dispatch(SessionPersisted(session_id=sid))
            sid = self._session.id
            await self._db.append_turn(self._owner_id, sid, user_turn)
            await self._db.append_turn(self._owner_id, sid, final_turn)
        except PersistenceFailure as exc:
            logger.warning("Could not save conversation for %s: %s", self._session.id, exc)
            notices.append(f"Conversation not saved: {exc}")
        self._check(generation)

