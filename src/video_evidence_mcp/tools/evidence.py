"""Evidence tools — ask, browse, bookmark and report on video evidence sessions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated

from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from ..errors import SessionNotFound, make_tool_error
from ..identity import current_identity
from ..models.evidence import AskResponse, BookmarkToggle, TimelineEntry, TimelineEvent
from ..report import compile_report, render_report_markdown, write_report
from ..sessions import EvidenceWorkspace, get_workspace_store
from ..timecode import format_timecode
from ..types import EventIndex, ModelIdParam, PromptParam, SessionIdParam, VideoFilePath

logger = logging.getLogger(__name__)

evidence_server = FastMCP("evidence")


def _entries(
    events: tuple[TimelineEvent, ...],
    saved: dict[int, str],
    start: int = 0,
) -> list[TimelineEntry]:
    return [
        TimelineEntry(
            index=start + i,
            from_time=e.from_time,
            to_time=e.to_time,
            timecode=format_timecode(e.from_time),
            summary=e.summary,
            confidence=e.confidence,
            saved=(start + i) in saved,
        )
        for i, e in enumerate(events)
    ]


async def _workspace(session_id: str) -> EvidenceWorkspace:
    """Find the active workspace, or activate the persisted session into a new one."""
    store = get_workspace_store()
    ws = store.get(session_id)
    if ws is not None:
        return ws
    ws = store.create(current_identity())
    try:
        await ws.engine.activate(session_id)
    except Exception:
        store.drop(ws.handle)
        raise
    store.remember(ws)
    await ws.reconciler.refresh()
    return ws


@evidence_server.tool(
    annotations=ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def evidence_ask(
    prompt: PromptParam,
    file_path: VideoFilePath | None = None,
    session_id: SessionIdParam | None = None,
    model: ModelIdParam | None = None,
) -> dict:
    """Ask a question about a video and get time-ranged findings.

    The first question needs file_path; follow-ups reuse the stored video
    without re-uploading. Attaching a different file replaces the evidence
    but keeps earlier findings.

    Args:
        prompt: What to look for in the video.
        file_path: Local video to attach (required for a new session).
        session_id: Continue an existing session.
        model: Optional Gemini model override.

    Returns:
        Dict with the answer, new timeline entries and session status.
    """
    try:
        store = get_workspace_store()
        ws = await _workspace(session_id) if session_id else store.create(current_identity())
        first_index = len(ws.engine.session.events)
        try:
            result = await ws.engine.submit(prompt, file_path=file_path, model_id=model)
        except Exception:
            if not session_id:
                store.drop(ws.handle)
            raise
        public_id = store.remember(ws)
    except Exception as exc:
        return make_tool_error(exc)

    session = result.session
    return AskResponse(
        session_id=public_id,
        status=session.status,
        answer=result.turn.text,
        turn_state=result.turn.state,
        new_events=_entries(result.new_events, {}, start=first_index),
        total_events=len(session.events),
        fingerprint=session.fingerprint,
        notices=result.notices,
    ).model_dump(mode="json")


@evidence_server.tool(
    annotations=ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def evidence_new_session(session_id: SessionIdParam) -> dict:
    """Reset a workspace to an empty session (evidence, events and conversation cleared).

    Args:
        session_id: Workspace or session to reset.

    Returns:
        Dict with the new (unsaved) session handle and status.
    """
    try:
        store = get_workspace_store()
        ws = store.get(session_id)
        if ws is None:
            raise SessionNotFound(f"No active workspace {session_id}")
        session = ws.engine.reset()
        public_id = store.remember(ws)
    except Exception as exc:
        return make_tool_error(exc)
    return {"session_id": public_id, "status": session.status}


@evidence_server.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def evidence_open_session(session_id: SessionIdParam) -> dict:
    """Open a session: its conversation, timeline and bookmark flags.

    Args:
        session_id: Persisted session id or active workspace handle.

    Returns:
        Dict with session header, conversation and timeline with saved flags.
    """
    try:
        ws = await _workspace(session_id)
        notices = await ws.reconciler.refresh()
    except Exception as exc:
        return make_tool_error(exc)

    session = ws.engine.session
    return {
        "session_id": ws.session_id,
        "status": session.status,
        "video_name": session.video_name,
        "fingerprint": session.fingerprint,
        "conversation": [t.model_dump(mode="json") for t in session.conversation],
        "events": [e.model_dump() for e in _entries(session.events, ws.reconciler.saved)],
        "notices": notices,
    }


@evidence_server.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def evidence_list_sessions() -> dict:
    """List the investigator's saved sessions, newest first.

    Returns:
        Dict with a sessions list (id, title, video name, status, created_at).
    """
    try:
        records = await get_workspace_store().db.list_sessions(current_identity())
    except Exception as exc:
        return make_tool_error(exc)
    return {
        "sessions": [
            r.model_dump(mode="json", include={"id", "title", "video_name", "status", "created_at"})
            for r in records
        ],
        "count": len(records),
    }


@evidence_server.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def evidence_timeline(session_id: SessionIdParam) -> dict:
    """Show the session timeline with each event's saved flag.

    Args:
        session_id: Workspace or persisted session id.

    Returns:
        Dict with status, events (index, timecode, summary, confidence, saved) and notices.
    """
    try:
        ws = await _workspace(session_id)
        notices = await ws.reconciler.refresh()
    except Exception as exc:
        return make_tool_error(exc)
    session = ws.engine.session
    return {
        "session_id": ws.session_id,
        "status": session.status,
        "video_name": session.video_name,
        "events": [e.model_dump() for e in _entries(session.events, ws.reconciler.saved)],
        "notices": notices,
    }


@evidence_server.tool(
    annotations=ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=False,
    )
)
async def evidence_toggle_bookmark(session_id: SessionIdParam, index: EventIndex) -> dict:
    """Save or unsave a timeline event for the report.

    Args:
        session_id: Workspace or persisted session id.
        index: Event position from evidence_timeline.

    Returns:
        Dict with the event index, its new saved flag and bookmark id.
    """
    try:
        ws = await _workspace(session_id)
        saved, bookmark_id = await ws.reconciler.toggle(index)
    except Exception as exc:
        return make_tool_error(exc)
    return BookmarkToggle(
        session_id=ws.session_id, index=index, saved=saved, bookmark_id=bookmark_id,
    ).model_dump()


@evidence_server.tool(
    annotations=ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def evidence_report(
    session_id: SessionIdParam,
    generated_at: Annotated[str | None, Field(
        description="ISO-8601 generation timestamp; defaults to now (UTC)",
    )] = None,
    output_dir: Annotated[str | None, Field(
        description="Directory to write evidence-report.md into",
    )] = None,
) -> dict:
    """Compile the saved findings into a narrative report and findings log.

    Args:
        session_id: Workspace or persisted session id.
        generated_at: Explicit generation timestamp for reproducible output.
        output_dir: Optional directory for a markdown export.

    Returns:
        Dict with narrative, rows, markdown and the written file path if any.
    """
    try:
        ws = await _workspace(session_id)
        session = ws.engine.session
        if not session.persisted:
            raise SessionNotFound("Session is not saved yet; ask a question first")
        when = datetime.fromisoformat(generated_at) if generated_at else datetime.now(timezone.utc)
        bookmarks = await ws.engine.db.list_bookmarks(ws.engine.owner_id, session.id)
        report = compile_report(session.video_name, bookmarks, when)
        path = None
        if output_dir:
            path = write_report(
                report, Path(output_dir).expanduser(), stem=f"evidence-report-{session.id}",
            )
    except Exception as exc:
        return make_tool_error(exc)

    result = report.model_dump(mode="json")
    result["markdown"] = render_report_markdown(report)
    result["path"] = str(path) if path else None
    return result


@evidence_server.tool(
    annotations=ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def evidence_delete_session(session_id: SessionIdParam) -> dict:
    """Delete a saved session with its conversation and bookmarks.

    Args:
        session_id: Persisted session id.

    Returns:
        Dict with ``deleted`` flag.
    """
    try:
        store = get_workspace_store()
        deleted = await store.db.delete_session(current_identity(), session_id)
        store.drop(session_id)
    except Exception as exc:
        return make_tool_error(exc)
    logger.info("Deleted session %s: %s", session_id, deleted)
    return {"session_id": session_id, "deleted": deleted}
