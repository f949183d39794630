"""Saved-event reconciliation between displayed findings and persisted bookmarks.

Timeline events carry no id, so a displayed event counts as saved when some
bookmark has the same summary and a ``from_time`` within a small tolerance.
The first matching bookmark wins.

Known limitation: duplicate findings with identical time and summary are
indistinguishable, so all of them report the same bookmark id.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from .config import get_config
from .errors import InvalidTransition, PersistenceFailure
from .models.evidence import Bookmark, TimelineEvent
from .pipeline import EvidenceEngine

logger = logging.getLogger(__name__)


def match_saved_events(
    events: Sequence[TimelineEvent],
    bookmarks: Sequence[Bookmark],
    tolerance: float,
) -> dict[int, str]:
    """Map display index → bookmark id for every event that has a match."""
    saved: dict[int, str] = {}
    for index, event in enumerate(events):
        for bookmark in bookmarks:
            if (
                abs(bookmark.from_time - event.from_time) < tolerance
                and bookmark.summary == event.summary
            ):
                saved[index] = bookmark.id
                break
    return saved


class SavedEventReconciler:
    """Local, best-effort view of which displayed events are bookmarked.

    The cache belongs to one (session id, engine generation) scope. Results
    fetched for a scope that is no longer current are dropped, and any
    operation on a stale cache re-fetches first.
    """

    def __init__(
        self,
        engine: EvidenceEngine,
        *,
        tolerance: float | None = None,
    ) -> None:
        if engine.db is None:
            raise ValueError("Reconciliation needs a persistence-backed engine")
        self._engine = engine
        self._tolerance = tolerance if tolerance is not None else get_config().bookmark_tolerance
        self._saved: dict[int, str] = {}
        self._scope: tuple[str, int] | None = None
        self._toggle_lock = asyncio.Lock()

    def _current_scope(self) -> tuple[str, int]:
        return (self._engine.session.id, self._engine.generation)

    @property
    def saved(self) -> dict[int, str]:
        """Copy of the index → bookmark id cache for the current scope."""
        if self._scope != self._current_scope():
            return {}
        return dict(self._saved)

    def is_saved(self, index: int) -> bool:
        return index in self.saved

    def bookmark_id(self, index: int) -> str | None:
        return self.saved.get(index)

    async def refresh(self) -> list[str]:
        """Re-fetch bookmarks and recompute the saved view.

        Returns:
            Non-fatal notices; a failed fetch keeps the previous view.
        """
        scope = self._current_scope()
        session = self._engine.session
        if not session.persisted:
            self._saved, self._scope = {}, scope
            return []
        try:
            bookmarks = await self._engine.db.list_bookmarks(self._engine.owner_id, session.id)
        except PersistenceFailure as exc:
            logger.warning("Bookmark fetch failed for %s: %s", session.id, exc)
            return [f"Saved events could not be refreshed: {exc}"]
        if scope != self._current_scope():
            logger.info("Ignoring bookmarks fetched for superseded session %s", scope[0])
            return []
        self._saved = match_saved_events(self._engine.session.events, bookmarks, self._tolerance)
        self._scope = scope
        return []

    async def toggle(self, index: int) -> tuple[bool, str | None]:
        """Save or unsave the event at *index*.

        Toggles run one at a time, so concurrent calls for the same event
        never create two bookmarks.

        Returns:
            ``(saved, bookmark_id)`` after the toggle.

        Raises:
            IndexError: If *index* is outside the displayed events.
            InvalidTransition: If the session has not been persisted yet.
            PersistenceFailure: If the remote call fails; the cache is unchanged.
        """
        async with self._toggle_lock:
            return await self._toggle(index)

    async def _toggle(self, index: int) -> tuple[bool, str | None]:
        session = self._engine.session
        if not 0 <= index < len(session.events):
            raise IndexError(f"No timeline event at index {index}")
        if not session.persisted:
            raise InvalidTransition("Session is not saved yet; ask a question first")
        if self._scope != self._current_scope():
            notices = await self.refresh()
            if self._scope != self._current_scope():
                raise PersistenceFailure("; ".join(notices) or "Saved events are out of date")

        db, owner, scope = self._engine.db, self._engine.owner_id, self._current_scope()
        existing = self._saved.get(index)
        if existing is not None:
            await db.delete_bookmark(owner, session.id, existing)
            if scope == self._current_scope():
                self._saved.pop(index, None)
            logger.info("Unsaved event %d of %s (bookmark %s)", index, session.id, existing)
            return False, None

        bookmark_id = await db.create_bookmark(owner, session.id, session.events[index])
        if scope == self._current_scope():
            self._saved[index] = bookmark_id
        logger.info("Saved event %d of %s as bookmark %s", index, session.id, bookmark_id)
        return True, bookmark_id
