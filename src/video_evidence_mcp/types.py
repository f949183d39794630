"""Shared type aliases for tool parameters."""

from __future__ import annotations

from typing import Annotated

from pydantic import Field

PromptParam = Annotated[str, Field(
    min_length=1,
    max_length=4000,
    description="Question about the video, e.g. 'When does the red car enter the frame?'",
)]
VideoFilePath = Annotated[str, Field(
    min_length=1,
    description="Path to a local video file (mp4, webm, mov, avi, mkv, mpeg, wmv, 3gpp)",
)]
SessionIdParam = Annotated[str, Field(
    min_length=1,
    description="Session id returned by evidence_ask or evidence_list_sessions",
)]
EventIndex = Annotated[int, Field(ge=0, description="Position of the event in the session timeline")]
ModelIdParam = Annotated[str, Field(
    min_length=1,
    description="Gemini model id; must be one of the configured allowed models",
)]
