"""In-memory registry of active evidence workspaces."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .config import get_config
from .inference import EvidenceInference, GeminiInference
from .persistence import EvidenceDB
from .pipeline import EvidenceEngine
from .reconciler import SavedEventReconciler
from .storage import EvidenceStorage, GeminiFileStorage

logger = logging.getLogger(__name__)


@dataclass
class EvidenceWorkspace:
    """One investigator's engine plus its saved-event view."""

    handle: str
    engine: EvidenceEngine
    reconciler: SavedEventReconciler
    last_active: datetime = field(default_factory=datetime.now)

    @property
    def session_id(self) -> str:
        """Persisted session id when available, otherwise the workspace handle."""
        session = self.engine.session
        return session.id if session.persisted else self.handle

    def touch(self) -> None:
        self.last_active = datetime.now()


class WorkspaceStore:
    """Process-wide workspace registry with TTL eviction.

    Workspaces are addressable by their handle and, once the session is
    persisted, by the persisted session id.
    """

    def __init__(
        self,
        db: EvidenceDB,
        *,
        storage: EvidenceStorage | None = None,
        inference: EvidenceInference | None = None,
    ) -> None:
        self._db = db
        self._storage = storage or GeminiFileStorage()
        self._inference = inference or GeminiInference()
        self._workspaces: dict[str, EvidenceWorkspace] = {}
        self._aliases: dict[str, str] = {}

    @property
    def db(self) -> EvidenceDB:
        return self._db

    def create(self, owner_id: str) -> EvidenceWorkspace:
        """Create an empty workspace, evicting expired or oldest ones first."""
        self._evict_expired()
        cfg = get_config()
        if len(self._workspaces) >= cfg.max_sessions:
            oldest = min(self._workspaces.values(), key=lambda w: w.last_active)
            self.drop(oldest.handle)

        engine = EvidenceEngine(
            storage=self._storage,
            inference=self._inference,
            db=self._db,
            owner_id=owner_id,
        )
        ws = EvidenceWorkspace(
            handle=f"ws-{uuid.uuid4().hex[:12]}",
            engine=engine,
            reconciler=SavedEventReconciler(engine),
        )
        self._workspaces[ws.handle] = ws
        return ws

    def get(self, key: str) -> EvidenceWorkspace | None:
        """Look up a workspace by handle or persisted session id."""
        self._evict_expired()
        ws = self._workspaces.get(self._aliases.get(key, key))
        if ws is not None:
            ws.touch()
        return ws

    def remember(self, ws: EvidenceWorkspace) -> str:
        """Register the workspace under its persisted id; returns its public id."""
        for alias, handle in list(self._aliases.items()):
            if handle == ws.handle and alias != ws.session_id:
                del self._aliases[alias]
        if ws.engine.session.persisted:
            self._aliases[ws.session_id] = ws.handle
        return ws.session_id

    def drop(self, key: str) -> bool:
        """Forget a workspace and its aliases. True if one was removed."""
        handle = self._aliases.get(key, key)
        ws = self._workspaces.pop(handle, None)
        if ws is None:
            return False
        self._aliases = {a: h for a, h in self._aliases.items() if h != handle}
        return True

    def _evict_expired(self) -> int:
        """Remove workspaces idle beyond the configured timeout. Returns count evicted."""
        timeout = timedelta(hours=get_config().session_timeout_hours)
        now = datetime.now()
        expired = [h for h, w in self._workspaces.items() if now - w.last_active > timeout]
        for handle in expired:
            self.drop(handle)
        if expired:
            logger.info("Evicted %d idle workspace(s)", len(expired))
        return len(expired)

    @property
    def count(self) -> int:
        """Number of active workspaces."""
        return len(self._workspaces)

    def close(self) -> None:
        self._workspaces.clear()
        self._aliases.clear()
        self._db.close()


_store: WorkspaceStore | None = None


def get_workspace_store() -> WorkspaceStore:
    """Return the module-level store, opening the configured database on first use."""
    global _store
    if _store is None:
        _store = WorkspaceStore(EvidenceDB(get_config().db_path))
    return _store


def close_workspace_store() -> None:
    global _store
    if _store is not None:
        _store.close()
        _store = None
