"""Narrative and findings-log models for report export."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

VisualClarity = Literal["High", "Moderate", "Low"]


class ReportRow(BaseModel):
    """One bookmarked finding in the findings log."""

    timecode: str
    from_time: float
    to_time: float
    summary: str
    confidence: float
    visual_clarity: VisualClarity


class EvidenceReport(BaseModel):
    """Compiled report for one piece of evidence."""

    evidence_name: str
    generated_at: datetime
    narrative: str
    rows: list[ReportRow] = Field(default_factory=list)
