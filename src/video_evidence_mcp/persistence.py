"""SQLite-backed persistence for sessions, turns and bookmarks (WAL mode).

Every query is scoped by ``owner_id``. The ``*_sync`` methods do the work;
the async methods run them in a worker thread and convert ``sqlite3.Error``
into :class:`PersistenceFailure`.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import uuid
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import TypeVar

from .errors import PersistenceFailure
from .models.evidence import (
    Bookmark,
    EvidenceSession,
    Findings,
    SessionRecord,
    TimelineEvent,
    Turn,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    video_name TEXT NOT NULL DEFAULT '',
    fingerprint TEXT,
    storage_key TEXT,
    video_reference TEXT,
    model TEXT NOT NULL DEFAULT '',
    title TEXT NOT NULL DEFAULT 'New Investigation',
    status TEXT NOT NULL DEFAULT 'idle',
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS turns (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    session_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    role TEXT NOT NULL,
    text TEXT NOT NULL DEFAULT '',
    state TEXT NOT NULL DEFAULT 'resolved',
    findings TEXT,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS bookmarks (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    from_time REAL NOT NULL,
    to_time REAL NOT NULL,
    summary TEXT NOT NULL,
    confidence REAL NOT NULL,
    saved_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_turns_session ON turns (owner_id, session_id, created_at);
CREATE INDEX IF NOT EXISTS idx_bookmarks_session ON bookmarks (owner_id, session_id);
"""

_SESSION_COLUMNS = (
    "id, owner_id, video_name, fingerprint, storage_key, video_reference, "
    "model, title, status, created_at"
)


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


class EvidenceDB:
    """SQLite store for the persistence collaborator.

    One connection is shared across worker threads and serialised with a
    lock; WAL keeps writes fast.
    """

    def __init__(self, db_path: str) -> None:
        path = Path(db_path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.executescript(_SCHEMA)

    async def _run(self, fn: Callable[..., T], *args) -> T:
        def locked() -> T:
            with self._lock:
                return fn(*args)

        try:
            return await asyncio.to_thread(locked)
        except sqlite3.Error as exc:
            logger.warning("Persistence call %s failed: %s", fn.__name__, exc)
            raise PersistenceFailure(f"{fn.__name__} failed: {exc}") from exc

    # ── sessions ────────────────────────────────────────────────────────────

    def create_session_sync(self, owner_id: str, session: EvidenceSession, title: str) -> str:
        sid = _new_id()
        self._conn.execute(
            f"INSERT INTO sessions ({_SESSION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                sid, owner_id, session.video_name, session.fingerprint, session.storage_key,
                session.video_reference, session.model, title, session.status,
                utcnow().isoformat(),
            ),
        )
        self._conn.commit()
        return sid

    def update_session_sync(
        self, owner_id: str, session: EvidenceSession, title: str | None = None,
    ) -> bool:
        cursor = self._conn.execute(
            """UPDATE sessions SET video_name = ?, fingerprint = ?, storage_key = ?,
                   video_reference = ?, model = ?, status = ?, title = COALESCE(?, title)
               WHERE id = ? AND owner_id = ?""",
            (
                session.video_name, session.fingerprint, session.storage_key,
                session.video_reference, session.model, session.status, title,
                session.id, owner_id,
            ),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def load_session_sync(self, owner_id: str, session_id: str) -> SessionRecord | None:
        row = self._conn.execute(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ? AND owner_id = ?",
            (session_id, owner_id),
        ).fetchone()
        return _row_to_record(row) if row else None

    def list_sessions_sync(self, owner_id: str) -> list[SessionRecord]:
        rows = self._conn.execute(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE owner_id = ? "
            "ORDER BY created_at DESC, rowid DESC",
            (owner_id,),
        ).fetchall()
        return [_row_to_record(r) for r in rows]

    def delete_session_sync(self, owner_id: str, session_id: str) -> bool:
        """Delete a session with its turns and bookmarks. True if it existed."""
        with self._conn:
            self._conn.execute(
                "DELETE FROM turns WHERE session_id = ? AND owner_id = ?", (session_id, owner_id),
            )
            self._conn.execute(
                "DELETE FROM bookmarks WHERE session_id = ? AND owner_id = ?", (session_id, owner_id),
            )
            cursor = self._conn.execute(
                "DELETE FROM sessions WHERE id = ? AND owner_id = ?", (session_id, owner_id),
            )
        return cursor.rowcount > 0

    # ── turns ───────────────────────────────────────────────────────────────

    def append_turn_sync(self, owner_id: str, session_id: str, turn: Turn) -> None:
        self._conn.execute(
            """INSERT INTO turns (id, session_id, owner_id, role, text, state, findings, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                turn.id, session_id, owner_id, turn.role, turn.text, turn.state,
                turn.findings.model_dump_json() if turn.findings else None,
                turn.created_at.isoformat(),
            ),
        )
        self._conn.commit()

    def list_turns_sync(self, owner_id: str, session_id: str) -> list[Turn]:
        rows = self._conn.execute(
            "SELECT id, role, text, state, findings, created_at FROM turns "
            "WHERE session_id = ? AND owner_id = ? ORDER BY created_at ASC, seq ASC",
            (session_id, owner_id),
        ).fetchall()
        return [
            Turn(
                id=r[0],
                role=r[1],
                text=r[2],
                state=r[3],
                findings=Findings.model_validate_json(r[4]) if r[4] else None,
                created_at=datetime.fromisoformat(r[5]),
            )
            for r in rows
        ]

    # ── bookmarks ───────────────────────────────────────────────────────────

    def create_bookmark_sync(self, owner_id: str, session_id: str, event: TimelineEvent) -> str:
        bid = _new_id()
        self._conn.execute(
            """INSERT INTO bookmarks
               (id, session_id, owner_id, from_time, to_time, summary, confidence, saved_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                bid, session_id, owner_id, event.from_time, event.to_time,
                event.summary, event.confidence, utcnow().isoformat(),
            ),
        )
        self._conn.commit()
        return bid

    def list_bookmarks_sync(self, owner_id: str, session_id: str) -> list[Bookmark]:
        rows = self._conn.execute(
            "SELECT id, from_time, to_time, summary, confidence, saved_at FROM bookmarks "
            "WHERE session_id = ? AND owner_id = ? ORDER BY saved_at ASC, rowid ASC",
            (session_id, owner_id),
        ).fetchall()
        return [
            Bookmark(
                id=r[0], from_time=r[1], to_time=r[2], summary=r[3], confidence=r[4],
                saved_at=datetime.fromisoformat(r[5]),
            )
            for r in rows
        ]

    def delete_bookmark_sync(self, owner_id: str, session_id: str, bookmark_id: str) -> bool:
        cursor = self._conn.execute(
            "DELETE FROM bookmarks WHERE id = ? AND session_id = ? AND owner_id = ?",
            (bookmark_id, session_id, owner_id),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    # ── async facade ────────────────────────────────────────────────────────

    async def create_session(
        self, owner_id: str, session: EvidenceSession, title: str = "New Investigation",
    ) -> str:
        return await self._run(self.create_session_sync, owner_id, session, title)

    async def update_session(
        self, owner_id: str, session: EvidenceSession, title: str | None = None,
    ) -> bool:
        return await self._run(self.update_session_sync, owner_id, session, title)

    async def load_session(self, owner_id: str, session_id: str) -> SessionRecord | None:
        return await self._run(self.load_session_sync, owner_id, session_id)

    async def list_sessions(self, owner_id: str) -> list[SessionRecord]:
        return await self._run(self.list_sessions_sync, owner_id)

    async def delete_session(self, owner_id: str, session_id: str) -> bool:
        return await self._run(self.delete_session_sync, owner_id, session_id)

    async def append_turn(self, owner_id: str, session_id: str, turn: Turn) -> None:
        await self._run(self.append_turn_sync, owner_id, session_id, turn)

    async def list_turns(self, owner_id: str, session_id: str) -> list[Turn]:
        return await self._run(self.list_turns_sync, owner_id, session_id)

    async def create_bookmark(self, owner_id: str, session_id: str, event: TimelineEvent) -> str:
        return await self._run(self.create_bookmark_sync, owner_id, session_id, event)

    async def list_bookmarks(self, owner_id: str, session_id: str) -> list[Bookmark]:
        return await self._run(self.list_bookmarks_sync, owner_id, session_id)

    async def delete_bookmark(self, owner_id: str, session_id: str, bookmark_id: str) -> bool:
        return await self._run(self.delete_bookmark_sync, owner_id, session_id, bookmark_id)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()


def _row_to_record(row: tuple) -> SessionRecord:
    return SessionRecord(
        id=row[0],
        owner_id=row[1],
        video_name=row[2],
        fingerprint=row[3],
        storage_key=row[4],
        video_reference=row[5],
        model=row[6],
        title=row[7],
        status=row[8],
        created_at=datetime.fromisoformat(row[9]),
    )
