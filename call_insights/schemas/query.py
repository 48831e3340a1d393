"""
Data models for analytics questions, intermediate results and API payloads.

Internal results (intent, search, metrics) use snake_case field names. The
request/response models exchanged with the dashboard use camelCase aliases
to match the front end's JSON.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from call_insights.schemas.call_record import CallRecord
from call_insights.services.vocabulary import DomainProfile


class IntentType(str, Enum):
    DISPOSITION = "disposition"
    SENTIMENT = "sentiment"
    AGENT_PERFORMANCE = "agent_performance"
    TIMING = "timing"
    QUEUE_ANALYSIS = "queue_analysis"
    SUMMARY = "summary"
    TRENDS = "trends"
    KEYWORD_SEARCH = "keyword_search"
    DOMAIN_SEARCH = "domain_filtered_search"
    GENERAL = "general"


@dataclass
class QueryIntent:
    """Classifier output for one question."""
    intent: IntentType
    question: str
    is_keyword_search: bool = False
    search_terms: list[str] = field(default_factory=list)
    domain: Optional[DomainProfile] = None
    disposition_filter: Optional[str] = None

    @property
    def query_type(self) -> str:
        if self.domain is not None:
            return self.domain.query_type
        return self.intent.value


# ── Keyword search ───────────────────────────────────────────────


class KeywordMatch(BaseModel):
    """One record that matched at least one search variant."""
    record_id: str
    agent: str
    disposition: str
    sentiment: str
    duration: float
    snippets: list[str] = Field(default_factory=list)
    match_count: int
    matched_variants: list[str] = Field(default_factory=list)


class SearchStats(BaseModel):
    total_records_searched: int
    records_with_transcripts: int
    match_percentage: float  # of records with transcripts


class KeywordSearchResult(BaseModel):
    total_matches: int
    search_terms: list[str]
    expanded_terms: list[str]
    expanded_by_term: dict[str, list[str]] = Field(default_factory=dict)
    matching_records: list[KeywordMatch] = Field(default_factory=list)
    stats: SearchStats

    @property
    def percentage_of_total_calls(self) -> float:
        total = self.stats.total_records_searched
        if total == 0:
            return 0.0
        return len(self.matching_records) / total * 100


# ── Aggregated metrics ───────────────────────────────────────────


class Breakdown(BaseModel):
    count: int
    percentage: float


class AgentMetrics(BaseModel):
    total_calls: int
    avg_duration: float
    avg_hold_time: float
    top_dispositions: list[str]
    sentiment_score: float
    resolution_rate: float
    efficiency_score: float


class QueueMetrics(BaseModel):
    total_calls: int
    avg_duration: float
    avg_wait_time: float
    top_dispositions: list[str]


class TrendPoint(BaseModel):
    call_volume: int
    avg_duration: float
    resolution_rate: float


class PerformanceIndicators(BaseModel):
    calls_over_15_min: int = 0
    calls_under_2_min: int = 0
    pct_over_15_min: float = 0.0
    pct_under_2_min: float = 0.0
    resolution_rate: float = 0.0


class AggregatedMetrics(BaseModel):
    total_calls: int
    avg_call_duration: float = 0.0
    median_call_duration: float = 0.0
    p90_call_duration: float = 0.0
    p95_call_duration: float = 0.0
    avg_hold_time: float = 0.0
    avg_queue_time: float = 0.0
    disposition_breakdown: dict[str, Breakdown] = Field(default_factory=dict)
    sentiment_breakdown: dict[str, Breakdown] = Field(default_factory=dict)
    agent_metrics: dict[str, AgentMetrics] = Field(default_factory=dict)
    queue_metrics: dict[str, QueueMetrics] = Field(default_factory=dict)
    hourly_distribution: dict[int, int] = Field(default_factory=dict)
    daily_trends: dict[date, TrendPoint] = Field(default_factory=dict)
    performance: PerformanceIndicators = Field(default_factory=PerformanceIndicators)


class Anomaly(BaseModel):
    type: str
    description: str
    severity: str  # low | medium | high
    count: int


# ── Completion ───────────────────────────────────────────────────


class CompletionResult(BaseModel):
    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


# ── API payloads ─────────────────────────────────────────────────


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecordFilters(CamelModel):
    """Server-side filters applied when records are fetched from storage."""
    period: str = "all"  # all | today | yesterday | last7days | lastMonth | dateRange
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    agent: Optional[str] = None
    dispositions: list[str] = Field(default_factory=list)


class QueryRequest(CamelModel):
    query: str = ""
    records: Optional[list[CallRecord]] = None
    intent_hint: Optional[str] = None
    # Size of the full dataset when ``records`` is only a sample of it
    total_records: Optional[int] = None
    filters: Optional[RecordFilters] = None


class KeywordSearchSummary(CamelModel):
    total_matches: int
    records_with_matches: int
    records_with_transcripts: int
    percentage_of_total_calls: float
    percentage_of_transcribed_calls: float
    search_terms: list[str]
    expanded_terms: int


class QueryMetadata(CamelModel):
    model: str
    tokens_used: int
    data_points: int
    transcripts_available: int
    processing_time: int  # milliseconds
    query_type: str
    complexity: str
    is_filtered: bool = False
    total_records_before_filter: Optional[int] = None
    cached: bool = False
    follow_up_suggestions: list[str] = Field(default_factory=list)
    keyword_search_summary: Optional[KeywordSearchSummary] = None


class QueryResponse(CamelModel):
    response: str
    metadata: QueryMetadata


class CallQuestionRequest(CamelModel):
    query: str = ""
    record: Optional[CallRecord] = None


class CallQuestionResponse(CamelModel):
    response: str
    metadata: dict[str, Any] = Field(default_factory=dict)
