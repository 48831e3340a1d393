"""
Data models for call records read from the ``call_records`` table.

``CallRecord`` is the normalization boundary of the analytics core: raw rows
(durations as objects, JSON strings or seconds; sentiment as arrays, strings
or JSON text) are converted once on validation, so every downstream
component works with a single canonical shape.
"""

import math
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from call_insights.services.normalizer import (
    UNKNOWN_SENTIMENT,
    normalize_duration,
    normalize_sentiment_label,
    parse_json_list,
    parse_timestamp,
)

DURATION_FIELDS = ("call_duration", "total_hold_time", "time_in_queue")
TIMESTAMP_FIELDS = ("initiation_timestamp", "processed_at")
SCALAR_FIELDS = (
    "contact_id",
    "agent_username",
    "queue_name",
    "disposition_title",
    "campaign_name",
    "customer_cli",
    "primary_category",
    "call_summary",
    "recording_location",
)


def _lenient_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class SentimentEntry(BaseModel):
    """One timestamped sentiment judgement within a call."""

    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)

    sentiment: str = UNKNOWN_SENTIMENT
    speaker: str = ""
    confidence: Optional[float] = None
    text: str = ""
    start: Optional[float] = None
    end: Optional[float] = None

    @field_validator("confidence", "start", "end", mode="before")
    @classmethod
    def _numbers(cls, value: Any) -> Optional[float]:
        return _lenient_float(value)

    @field_validator("sentiment", "speaker", "text", mode="before")
    @classmethod
    def _strings(cls, value: Any) -> str:
        return value if isinstance(value, (str, int, float)) else ""

    @property
    def label(self) -> str:
        return normalize_sentiment_label(self.sentiment)


class EntityMention(BaseModel):
    """A named entity detected in the transcript."""

    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)

    entity_type: str = ""
    text: str = ""
    start: Optional[float] = None
    end: Optional[float] = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def _numbers(cls, value: Any) -> Optional[float]:
        return _lenient_float(value)


class CallRecord(BaseModel):
    """A finished call interaction, normalized and read-only."""

    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)

    id: str
    contact_id: Optional[str] = None
    agent_username: Optional[str] = None
    queue_name: Optional[str] = None
    disposition_title: Optional[str] = None
    campaign_name: Optional[str] = None
    customer_cli: Optional[str] = None
    primary_category: Optional[str] = None
    call_summary: Optional[str] = None
    recording_location: Optional[str] = None

    initiation_timestamp: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    # Seconds, always >= 0
    call_duration: float = 0.0
    total_hold_time: float = 0.0
    time_in_queue: float = 0.0

    transcript_text: str = ""
    sentiment: str = UNKNOWN_SENTIMENT
    sentiment_analysis: list[SentimentEntry] = Field(default_factory=list)
    entities: list[EntityMention] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize_raw(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        row = dict(data)
        row["id"] = row.get("id") or row.get("contact_id") or ""

        for name in SCALAR_FIELDS:
            if not isinstance(row.get(name), (str, int, float)) or isinstance(row.get(name), bool):
                row[name] = None

        for name in DURATION_FIELDS:
            row[name] = normalize_duration(row.get(name))

        for name in TIMESTAMP_FIELDS:
            row[name] = parse_timestamp(row.get(name))

        if not isinstance(row.get("transcript_text"), str):
            row["transcript_text"] = ""

        raw_sentiment = row.get("sentiment_analysis")
        row["sentiment"] = normalize_sentiment_label(row.get("sentiment", raw_sentiment))
        row["sentiment_analysis"] = [
            entry for entry in parse_json_list(raw_sentiment) if isinstance(entry, dict)
        ]
        row["entities"] = [
            entity for entity in parse_json_list(row.get("entities")) if isinstance(entity, dict)
        ]
        row["categories"] = [
            str(category) for category in parse_json_list(row.get("categories"))
            if isinstance(category, (str, int, float))
        ]
        return row

    @property
    def has_transcript(self) -> bool:
        return bool(self.transcript_text.strip())

    @property
    def agent(self) -> str:
        return self.agent_username or "Unknown"

    @property
    def disposition(self) -> str:
        return self.disposition_title or "Unknown"

    @property
    def queue(self) -> str:
        return self.queue_name or "Unknown"


class Pagination(BaseModel):
    """Page metadata in the dashboard's camelCase shape."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def for_page(cls, page: int, limit: int, total: int) -> "Pagination":
        offset = (page - 1) * limit
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if limit else 0,
            has_next=offset + limit < total,
            has_prev=page > 1,
        )


class CallRecordPage(BaseModel):
    data: list[CallRecord]
    pagination: Pagination
