"""
Field Normalizer.

Converts the heterogeneous representations found in stored call records
(duration objects, JSON-encoded strings, raw seconds, sentiment arrays)
into canonical values. Every function here is pure and lenient: bad input
degrades to a safe default and is logged at debug level, never raised,
because the ingestion pipeline that writes these rows is outside our control.
"""

from __future__ import annotations

import json
import math
from datetime import datetime
from typing import Any

from call_insights.logging_config import get_logger

logger = get_logger(__name__)

SENTIMENT_LABELS = {
    "positive": "Positive",
    "negative": "Negative",
    "neutral": "Neutral",
}
UNKNOWN_SENTIMENT = "Unknown"


def _non_negative_number(value: Any) -> float | None:
    """Return ``value`` as a finite, non-negative float, or None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return float(value)


def normalize_duration(value: Any) -> float:
    """
    Normalize a stored duration to seconds.

    Accepts ``{"minutes": m, "seconds": s}`` (minutes optional), the same
    object JSON-encoded as a string, a numeric string, or a raw number of
    seconds. Missing, malformed or negative input normalizes to 0.
    """
    if value is None or value == "":
        return 0.0

    if isinstance(value, bool):
        return 0.0

    if isinstance(value, (int, float)):
        return _non_negative_number(value) or 0.0

    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            logger.debug("duration_unparseable", raw=value[:50])
            return 0.0
        if isinstance(decoded, str):
            return 0.0
        return normalize_duration(decoded)

    if isinstance(value, dict):
        seconds = _non_negative_number(value.get("seconds"))
        minutes = _non_negative_number(value.get("minutes", 0))
        if seconds is None or minutes is None:
            logger.debug("duration_malformed", raw=value)
            return 0.0
        return minutes * 60 + seconds

    return 0.0


def normalize_sentiment_label(value: Any) -> str:
    """
    Reduce a stored sentiment value to Positive/Negative/Neutral/Unknown.

    Accepts a list of sentiment entries (the first entry's label wins), a
    JSON string encoding such a list, a bare label string, or a dict with a
    ``sentiment`` key.
    """
    if value is None:
        return UNKNOWN_SENTIMENT

    if isinstance(value, str):
        stripped = value.strip()
        if stripped[:1] in ("[", "{"):
            try:
                return normalize_sentiment_label(json.loads(stripped))
            except ValueError:
                return UNKNOWN_SENTIMENT
        return SENTIMENT_LABELS.get(stripped.lower(), UNKNOWN_SENTIMENT)

    if isinstance(value, list):
        if not value:
            return UNKNOWN_SENTIMENT
        return normalize_sentiment_label(value[0])

    if isinstance(value, dict):
        return normalize_sentiment_label(value.get("sentiment"))

    return UNKNOWN_SENTIMENT


def parse_json_list(value: Any) -> list[Any]:
    """Decode a list that may be stored as JSON text; anything else gives []."""
    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            logger.debug("json_list_unparseable", raw=value[:50])
            return []
    return value if isinstance(value, list) else []


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed); None when invalid."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug("timestamp_unparseable", raw=value[:40])
        return None
