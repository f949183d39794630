"""Normalization adapter for raw inference responses.

The model is untrusted: it may rename fields, omit them, or send the wrong
types. Each concept is looked up through an ordered list of synonyms; the
first present, non-empty value wins.

Field priority:
    findings list   findings, timestamps, events
    from_time       start, from, timestamp, start_time, from_time, fromTimestamp
    to_time         end, to, end_time, to_time, toTimestamp
    summary         summary, description, text, label   (default "Event Detected")
    confidence      confidence, score                   (default: fallback)
    description     description, summary, overview      (response level)
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping, Sequence
from typing import Any

from .errors import InferenceFailure
from .models.evidence import Findings, TimelineEvent
from .timecode import normalize_timestamp

logger = logging.getLogger(__name__)

LIST_KEYS = ("findings", "timestamps", "events")
START_KEYS = ("start", "from", "timestamp", "start_time", "from_time", "fromTimestamp")
END_KEYS = ("end", "to", "end_time", "to_time", "toTimestamp")
SUMMARY_KEYS = ("summary", "description", "text", "label")
CONFIDENCE_KEYS = ("confidence", "score")
DESCRIPTION_KEYS = ("description", "summary", "overview")

DEFAULT_SUMMARY = "Event Detected"


def _first(raw: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _confidence(value: Any, fallback: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return fallback
    try:
        number = float(value)
    except (OverflowError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return min(max(number, 0.0), 1.0)


def normalize_finding(raw: Any, fallback_confidence: float = 1.0) -> TimelineEvent | None:
    """Turn one raw finding into a TimelineEvent, or None if it isn't an object."""
    if not isinstance(raw, Mapping):
        return None
    start = max(normalize_timestamp(_first(raw, START_KEYS)), 0.0)
    end_raw = _first(raw, END_KEYS)
    end = max(normalize_timestamp(end_raw), 0.0) if end_raw is not None else start
    summary = _first(raw, SUMMARY_KEYS)
    summary = str(summary).strip() if summary is not None else ""
    return TimelineEvent(
        from_time=start,
        to_time=max(end, start),
        summary=summary or DEFAULT_SUMMARY,
        confidence=_confidence(_first(raw, CONFIDENCE_KEYS), fallback_confidence),
    )


def parse_findings(response: Any, fallback_confidence: float = 1.0) -> Findings:
    """Normalize a raw response (dict or JSON text) into a Findings batch.

    Raises:
        InferenceFailure: If the response is not an object or carries no list
            under any of the findings keys.
    """
    if isinstance(response, (str, bytes)):
        try:
            response = json.loads(response)
        except ValueError as exc:
            raise InferenceFailure(f"Model returned non-JSON output: {str(response)[:200]!r}") from exc
    if not isinstance(response, Mapping):
        raise InferenceFailure(f"Expected a JSON object, got {type(response).__name__}")

    items = next((response[k] for k in LIST_KEYS if isinstance(response.get(k), list)), None)
    if items is None:
        raise InferenceFailure("Response has no findings list")

    events = []
    for raw in items:
        event = normalize_finding(raw, fallback_confidence)
        if event is None:
            logger.warning("Skipping malformed finding: %r", raw)
            continue
        events.append(event)

    description = _first(response, DESCRIPTION_KEYS)
    return Findings(
        summary=description.strip() if isinstance(description, str) else "",
        events=tuple(events),
    )
