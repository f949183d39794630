"""Timestamp normalization and display formatting.

The inference model reports times as plain seconds, ``MM:SS`` or
``HH:MM:SS``. ``normalize_timestamp`` folds all of them into float seconds
and never raises: malformed values collapse to ``0``.
"""

from __future__ import annotations

import math

_PART_WEIGHTS: dict[int, tuple[int, ...]] = {
    1: (1,),
    2: (60, 1),
    3: (3600, 60, 1),
}


def _finite_or_zero(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def normalize_timestamp(value: object) -> float:
    """Convert seconds, ``MM:SS`` or ``HH:MM:SS`` into seconds.

    Args:
        value: Number or string from an untrusted response.

    Returns:
        Seconds as float; ``0`` for empty, missing or malformed input.
    """
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        try:
            return _finite_or_zero(float(value))
        except OverflowError:
            return 0.0
    if not isinstance(value, str):
        return 0.0

    parts = value.strip().split(":")
    weights = _PART_WEIGHTS.get(len(parts))
    if weights is None:
        return 0.0
    try:
        numbers = [float(p) for p in parts]
    except ValueError:
        return 0.0
    return _finite_or_zero(sum(w * n for w, n in zip(weights, numbers)))


def format_timecode(seconds: float) -> str:
    """Render seconds as ``M:SS`` (minutes unbounded, seconds floored)."""
    if not isinstance(seconds, (int, float)) or not math.isfinite(seconds):
        return "0:00"
    total = max(int(math.floor(seconds)), 0)
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"
