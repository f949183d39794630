"""Report compilation from the bookmark set.

Output depends only on the evidence name, the bookmarks and the explicit
``generated_at`` value, so repeated calls with the same input render
byte-identical narratives, tables and markdown.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from .models.evidence import Bookmark
from .models.report import EvidenceReport, ReportRow, VisualClarity
from .timecode import format_timecode


def clarity_label(confidence: float) -> VisualClarity:
    if confidence > 0.9:
        return "High"
    if confidence > 0.7:
        return "Moderate"
    return "Low"


def _narrative(evidence_name: str, rows: Sequence[ReportRow]) -> str:
    name = evidence_name or "the submitted video"
    if not rows:
        return f'Review of "{name}" produced no saved findings.'
    noun = "finding" if len(rows) == 1 else "findings"
    sentences = [f'Review of "{name}" produced {len(rows)} saved {noun}.']
    for row in rows:
        span = row.timecode
        end = format_timecode(row.to_time)
        if end != span:
            span = f"{span} to {end}"
        summary = row.summary.rstrip(".")
        sentences.append(
            f"At {span}, {summary} ({row.visual_clarity.lower()} visual clarity, "
            f"{round(row.confidence * 100)}% confidence)."
        )
    return " ".join(sentences)


def compile_report(
    evidence_name: str,
    bookmarks: Sequence[Bookmark],
    generated_at: datetime,
) -> EvidenceReport:
    """Build the narrative and findings log, ordered by ``from_time``."""
    ordered = sorted(bookmarks, key=lambda b: b.from_time)
    rows = [
        ReportRow(
            timecode=format_timecode(b.from_time),
            from_time=b.from_time,
            to_time=b.to_time,
            summary=b.summary,
            confidence=b.confidence,
            visual_clarity=clarity_label(b.confidence),
        )
        for b in ordered
    ]
    return EvidenceReport(
        evidence_name=evidence_name,
        generated_at=generated_at,
        narrative=_narrative(evidence_name, rows),
        rows=rows,
    )


def _cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def render_report_markdown(report: EvidenceReport) -> str:
    """Render the report as markdown: header, narrative, findings table."""
    lines: list[str] = [
        f"# Evidence Report: {report.evidence_name or 'Untitled evidence'}",
        "",
        f"**Generated:** {report.generated_at.isoformat()}",
        "",
        "## Narrative",
        "",
        report.narrative,
        "",
        "## Findings Log",
        "",
    ]
    if report.rows:
        lines.append("| # | Time | Summary | Confidence | Visual Clarity |")
        lines.append("|---|------|---------|------------|----------------|")
        for i, row in enumerate(report.rows, start=1):
            span = f"{row.timecode} - {format_timecode(row.to_time)}"
            lines.append(
                f"| {i} | {span} | {_cell(row.summary)} | "
                f"{round(row.confidence * 100)}% | {row.visual_clarity} |"
            )
    else:
        lines.append("_No saved findings._")
    lines.append("")
    return "\n".join(lines)


def write_report(report: EvidenceReport, output_dir: Path, stem: str = "evidence-report") -> Path:
    """Write the markdown report into *output_dir* and return its path."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"{stem}.md"
    path.write_text(render_report_markdown(report))
    return path
