"""
Context Assembler and Transcript Example Selector.

Renders classifier output, aggregated metrics and keyword search results
into the markdown-ish text block handed to the completion service:

    summary header
    keyword search section        (content searches only)
    transcript examples           (all other intents)
    intent-specific section       (one dispatch over IntentType)

The assembled text is bounded by a token budget estimated as
``characters / 4``. When over budget it is hard-cut at ``budget * 4``
characters and ``TRUNCATION_MARKER`` is appended; the cut may land
mid-record.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from call_insights.config import get_settings
from call_insights.logging_config import get_logger
from call_insights.schemas.call_record import CallRecord
from call_insights.schemas.query import (
    AggregatedMetrics,
    IntentType,
    KeywordSearchResult,
    QueryIntent,
)
from call_insights.services.keyword_expansion import KeywordExpander
from call_insights.services.metrics import find_anomalies
from call_insights.services.vocabulary import INTENT_BONUS_TERMS

logger = get_logger(__name__)

TRUNCATION_MARKER = "\n\n[data truncated]"
HIGH_RELEVANCE_SCORE = 5
EXPANSION_PREVIEW = 15
MATCHED_VARIANT_PREVIEW = 5
LEADERBOARD_SIZE = 10

_QUESTION_WORD = re.compile(r"[\w'-]+")


# ── Transcript example selection ─────────────────────────────────


@dataclass(frozen=True)
class TranscriptExample:
    record: CallRecord
    score: float
    excerpt: str


def excerpt_transcript(text: str, limit: int = 400) -> str:
    """Cut ``text`` to ``limit`` chars, preferring a sentence or word boundary."""
    if len(text) <= limit:
        return text
    window = text[:limit]
    sentence_end = max(window.rfind("."), window.rfind("!"), window.rfind("?"))
    if sentence_end > limit * 0.7:
        return window[: sentence_end + 1]
    last_space = window.rfind(" ")
    if last_space > limit * 0.8:
        return window[:last_space] + "..."
    return window + "..."


def _term_weights(
    intent: QueryIntent, expander: KeywordExpander
) -> list[tuple[re.Pattern[str], int]]:
    """Exact original terms weigh 10, their expansions 5."""
    terms = list(intent.search_terms)
    if intent.domain is not None:
        terms.extend(intent.domain.scoring_terms)

    weights: dict[str, int] = {}
    for term in terms:
        for variant in expander.expand(term):
            weight = 10 if variant == term else 5
            key = variant.lower()
            weights[key] = max(weights.get(key, 0), weight)

    return [
        (re.compile(rf"\b{re.escape(variant)}\b"), weight)
        for variant, weight in weights.items()
    ]


def select_transcript_examples(
    records: Sequence[CallRecord],
    intent: QueryIntent,
    expander: KeywordExpander,
    target: int = 3,
    excerpt_chars: int = 400,
) -> list[TranscriptExample]:
    """
    Pick up to ``target`` illustrative transcripts.

    Candidates are scored by question-word overlap (x2), intent bonus
    words (x3), search-term occurrences for content searches (x10 exact,
    x5 expanded) and +1 for positive or negative sentiment. The top
    ``2 * target`` are walked greedily, preferring ones that add a new
    agent, disposition or sentiment; shortfalls are backfilled by score.
    """
    if target <= 0:
        return []

    transcribed = [record for record in records if record.has_transcript]
    if not transcribed:
        return []

    question_words = [w for w in _QUESTION_WORD.findall(intent.question.lower()) if len(w) > 3]
    bonus_terms = INTENT_BONUS_TERMS.get(intent.intent.value, ())
    term_patterns = _term_weights(intent, expander) if intent.is_keyword_search else []

    scored: list[tuple[float, CallRecord]] = []
    for record in transcribed:
        text = record.transcript_text.lower()
        score = 0.0
        score += sum(text.count(word) * 2 for word in question_words)
        score += sum(text.count(term) * 3 for term in bonus_terms)
        score += sum(len(pattern.findall(text)) * weight for pattern, weight in term_patterns)
        if record.sentiment in ("Positive", "Negative"):
            score += 1
        scored.append((score, record))

    scored.sort(key=lambda item: -item[0])
    candidates = scored[: target * 2]

    selected: list[tuple[float, CallRecord]] = []
    # Tracked by position; record ids may be empty
    chosen: set[int] = set()
    agents: set[str] = set()
    dispositions: set[str] = set()
    sentiments: set[str] = set()

    for position, (score, record) in enumerate(candidates):
        if len(selected) >= target:
            break
        adds_variety = (
            record.agent not in agents
            or record.disposition not in dispositions
            or record.sentiment not in sentiments
        )
        if adds_variety or not selected or score > HIGH_RELEVANCE_SCORE:
            selected.append((score, record))
            chosen.add(position)
            agents.add(record.agent)
            dispositions.add(record.disposition)
            sentiments.add(record.sentiment)

    for position, (score, record) in enumerate(candidates):
        if len(selected) >= target:
            break
        if position not in chosen:
            selected.append((score, record))
            chosen.add(position)

    return [
        TranscriptExample(record=record, score=score, excerpt=excerpt_transcript(record.transcript_text, excerpt_chars))
        for score, record in selected
    ]


# ── Formatting helpers ───────────────────────────────────────────


def format_duration(seconds: float) -> str:
    minutes, secs = divmod(int(round(seconds)), 60)
    return f"{minutes} minutes {secs} seconds"


def _minutes(seconds: float) -> str:
    return f"{round(seconds / 60)}m"


def truncate_context(context: str, token_budget: int) -> str:
    """Hard-cut ``context`` to ``token_budget * 4`` chars when over budget."""
    if len(context) / 4 > token_budget:
        logger.warning(
            "context_truncated",
            chars=len(context),
            budget_chars=token_budget * 4,
        )
        return context[: token_budget * 4] + TRUNCATION_MARKER
    return context


# ── Sections ─────────────────────────────────────────────────────


def _header(intent: QueryIntent, metrics: AggregatedMetrics, total_before_filter: Optional[int]) -> str:
    lines = ["## Call Center Analytics Summary"]
    if total_before_filter and intent.disposition_filter:
        label = intent.disposition_filter.upper()
        share = metrics.total_calls / total_before_filter * 100
        lines += [
            f"**IMPORTANT: Analysis filtered to {label} calls only**",
            f"**Total Calls Before Filtering:** {total_before_filter:,}",
            f"**{label} Calls Analyzed:** {metrics.total_calls:,}",
            f"**{label} Percentage of Total Calls:** {share:.1f}%",
        ]
    else:
        lines.append(f"**Total Calls Analyzed:** {metrics.total_calls:,}")
    lines += [
        f"**Average Call Duration:** {format_duration(metrics.avg_call_duration)}",
        f"**Average Hold Time:** {format_duration(metrics.avg_hold_time)}",
    ]
    return "\n".join(lines) + "\n\n"


def _keyword_section(
    intent: QueryIntent,
    result: KeywordSearchResult,
    top_matches: int,
    filtered: bool,
) -> str:
    title = intent.domain.title if intent.domain is not None else "Keyword Search Results"
    scope = intent.disposition_filter.upper() if filtered and intent.disposition_filter else "TOTAL"
    matching = len(result.matching_records)
    preview = ", ".join(result.expanded_terms[:EXPANSION_PREVIEW])
    if len(result.expanded_terms) > EXPANSION_PREVIEW:
        preview += "..."

    lines = [f"## {title}"]
    if filtered and intent.disposition_filter:
        lines.append(f"**Note: All results below are from {scope} calls only**")
    lines += [
        f"**Original Search Terms:** {', '.join(result.search_terms)}",
        f"**Expanded to {len(result.expanded_terms)} Variations:** {preview}",
        f"**CALL COUNT WITH KEYWORDS:** {matching} calls",
        f"**PERCENTAGE OF {scope} CALLS:** {result.percentage_of_total_calls:.1f}% "
        f"({matching} out of {result.stats.total_records_searched} {scope.lower()} calls)",
        f"**PERCENTAGE OF CALLS WITH TRANSCRIPTS:** {result.stats.match_percentage:.1f}% "
        f"({matching} out of {result.stats.records_with_transcripts} calls with transcript data)",
        f"**Total Keyword Mentions:** {result.total_matches}",
        f"**Records Searched:** {result.stats.total_records_searched}",
        f"**Records with Transcript Data:** {result.stats.records_with_transcripts}",
        "",
    ]

    if result.matching_records:
        lines.append("### Top Matching Records")
        for index, match in enumerate(result.matching_records[:top_matches], start=1):
            variants = ", ".join(match.matched_variants[:MATCHED_VARIANT_PREVIEW])
            if len(match.matched_variants) > MATCHED_VARIANT_PREVIEW:
                variants += "..."
            lines += [
                f"#### Match {index}",
                f"**Agent:** {match.agent} | **Disposition:** {match.disposition} | **Sentiment:** {match.sentiment}",
                f"**Duration:** {_minutes(match.duration)} | **Keyword Occurrences:** {match.match_count}",
                f"**Matched Variations:** {variants}",
            ]
            if match.snippets:
                lines.append("**Relevant Excerpts:**")
                lines += [f'- "{snippet}"' for snippet in match.snippets]
            lines.append("")

        if intent.domain is not None and intent.domain.report_seed_mentions:
            lines += _seed_mentions(intent, result)

    lines.append("---")
    return "\n".join(lines) + "\n\n"


def _seed_mentions(intent: QueryIntent, result: KeywordSearchResult) -> list[str]:
    """Matching records per seed term, most mentioned first."""
    counts: dict[str, int] = {}
    for seed in intent.domain.seed_terms:
        variants = {v.lower() for v in result.expanded_by_term.get(seed, [seed])}
        hits = sum(
            1 for match in result.matching_records
            if variants.intersection(v.lower() for v in match.matched_variants)
        )
        if hits:
            counts[seed] = hits

    lines = [f"### {intent.domain.title} Summary"]
    if counts:
        lines.append("**Individual Mentions:**")
        lines += [
            f"- {seed}: {count} mentions"
            for seed, count in sorted(counts.items(), key=lambda item: -item[1])
        ]
    lines.append("")
    return lines


def _examples_section(examples: Sequence[TranscriptExample], intent: QueryIntent, filtered: bool) -> str:
    if not examples:
        return ""
    lines = ["## Relevant Call Transcript Examples"]
    if filtered and intent.disposition_filter:
        lines.append(f"**Note: All transcript examples below are from {intent.disposition_filter.upper()} calls only**")
    for index, example in enumerate(examples, start=1):
        record = example.record
        lines += [
            f"### Example {index}",
            f"**Agent:** {record.agent} | **Disposition:** {record.disposition} | "
            f"**Sentiment:** {record.sentiment} | **Duration:** {_minutes(record.call_duration)}",
            f'**Transcript:** "{example.excerpt}"',
            "",
        ]
    lines.append("---")
    return "\n".join(lines) + "\n\n"


def _disposition_lines(metrics: AggregatedMetrics, limit: Optional[int] = None) -> list[str]:
    rows = sorted(metrics.disposition_breakdown.items(), key=lambda item: -item[1].count)[:limit]
    return [f"**{name}:** {row.count} calls ({row.percentage:.1f}%)" for name, row in rows]


def _disposition_section(metrics: AggregatedMetrics, records: Sequence[CallRecord]) -> str:
    return "\n".join(["## Disposition Analysis", *_disposition_lines(metrics)])


def _sentiment_section(metrics: AggregatedMetrics, records: Sequence[CallRecord]) -> str:
    lines = ["## Sentiment Analysis"]
    for name, row in sorted(metrics.sentiment_breakdown.items(), key=lambda item: -item[1].count):
        lines.append(f"**{name}:** {row.count} calls ({row.percentage:.1f}%)")
    lines += ["", "### Agent Sentiment Scores"]
    agents = sorted(metrics.agent_metrics.items(), key=lambda item: -item[1].sentiment_score)
    for name, agent in agents[:LEADERBOARD_SIZE]:
        lines.append(f"- {name}: {agent.sentiment_score:+.1f} ({agent.total_calls} calls)")
    return "\n".join(lines)


def _agent_section(metrics: AggregatedMetrics, records: Sequence[CallRecord]) -> str:
    lines = ["## Agent Performance"]
    agents = sorted(metrics.agent_metrics.items(), key=lambda item: -item[1].efficiency_score)
    for name, agent in agents[:LEADERBOARD_SIZE]:
        lines.append(
            f"**{name}:** {agent.total_calls} calls, {_minutes(agent.avg_duration)} avg duration, "
            f"{_minutes(agent.avg_hold_time)} avg hold, {agent.resolution_rate * 100:.1f}% resolved, "
            f"efficiency {agent.efficiency_score:.1f}, top dispositions: {', '.join(agent.top_dispositions)}"
        )
    return "\n".join(lines)


def _timing_section(metrics: AggregatedMetrics, records: Sequence[CallRecord]) -> str:
    perf = metrics.performance
    lines = [
        "## Call Timing Analysis",
        f"**Median Duration:** {format_duration(metrics.median_call_duration)}",
        f"**90th Percentile Duration:** {format_duration(metrics.p90_call_duration)}",
        f"**95th Percentile Duration:** {format_duration(metrics.p95_call_duration)}",
        f"**Average Queue Time:** {format_duration(metrics.avg_queue_time)}",
        f"**Calls Over 15 Minutes:** {perf.calls_over_15_min} ({perf.pct_over_15_min:.1f}%)",
        f"**Calls Under 2 Minutes:** {perf.calls_under_2_min} ({perf.pct_under_2_min:.1f}%)",
        "",
        *_hourly_lines(metrics),
    ]
    return "\n".join(lines)


def _hourly_lines(metrics: AggregatedMetrics) -> list[str]:
    if not metrics.hourly_distribution:
        return []
    return ["### Hourly Distribution"] + [
        f"- {hour:02d}:00: {count} calls" for hour, count in metrics.hourly_distribution.items()
    ]


def _queue_section(metrics: AggregatedMetrics, records: Sequence[CallRecord]) -> str:
    lines = ["## Queue Analysis"]
    queues = sorted(metrics.queue_metrics.items(), key=lambda item: -item[1].total_calls)
    for name, queue in queues[:LEADERBOARD_SIZE]:
        lines.append(
            f"**{name}:** {queue.total_calls} calls, {_minutes(queue.avg_duration)} avg duration, "
            f"{format_duration(queue.avg_wait_time)} avg wait, top dispositions: {', '.join(queue.top_dispositions)}"
        )
    return "\n".join(lines)


def _trends_section(metrics: AggregatedMetrics, records: Sequence[CallRecord]) -> str:
    lines = ["## Daily Trends"]
    for day, point in metrics.daily_trends.items():
        lines.append(
            f"- {day.isoformat()}: {point.call_volume} calls, {_minutes(point.avg_duration)} avg duration, "
            f"{point.resolution_rate * 100:.1f}% resolved"
        )
    lines += ["", *_hourly_lines(metrics)]
    return "\n".join(lines)


def _summary_section(metrics: AggregatedMetrics, records: Sequence[CallRecord]) -> str:
    perf = metrics.performance
    parts = [
        _disposition_section(metrics, records),
        _sentiment_section(metrics, records),
        _agent_section(metrics, records),
        _queue_section(metrics, records),
        "\n".join([
            "## Performance Indicators",
            f"**Resolution Rate:** {perf.resolution_rate:.1f}%",
            f"**Calls Over 15 Minutes:** {perf.calls_over_15_min} ({perf.pct_over_15_min:.1f}%)",
            f"**Calls Under 2 Minutes:** {perf.calls_under_2_min} ({perf.pct_under_2_min:.1f}%)",
        ]),
    ]
    anomalies = find_anomalies(records, metrics)
    if anomalies:
        parts.append("\n".join(
            ["## Anomalies"] + [f"- [{a.severity}] {a.description}" for a in anomalies]
        ))
    return "\n\n".join(parts)


def _overview_section(metrics: AggregatedMetrics, records: Sequence[CallRecord]) -> str:
    lines = ["## Key Metrics Overview", "**Top 5 Dispositions:**"]
    rows = sorted(metrics.disposition_breakdown.items(), key=lambda item: -item[1].count)[:5]
    lines += [f"- {name}: {row.percentage:.1f}%" for name, row in rows]
    return "\n".join(lines)


def _domain_section(metrics: AggregatedMetrics, records: Sequence[CallRecord]) -> str:
    lines = ["## Filtered Call Analysis", "### Disposition Breakdown", *_disposition_lines(metrics)]
    lines += ["", "### Agent Volume"]
    agents = sorted(metrics.agent_metrics.items(), key=lambda item: -item[1].total_calls)[:5]
    lines += [f"**{name}:** {a.total_calls} calls, {_minutes(a.avg_duration)} avg duration" for name, a in agents]
    return "\n".join(lines)


SectionRenderer = Callable[[AggregatedMetrics, Sequence[CallRecord]], str]

INTENT_SECTIONS: dict[IntentType, SectionRenderer] = {
    IntentType.DISPOSITION: _disposition_section,
    IntentType.SENTIMENT: _sentiment_section,
    IntentType.AGENT_PERFORMANCE: _agent_section,
    IntentType.TIMING: _timing_section,
    IntentType.QUEUE_ANALYSIS: _queue_section,
    IntentType.SUMMARY: _summary_section,
    IntentType.TRENDS: _trends_section,
    IntentType.DOMAIN_SEARCH: _domain_section,
    IntentType.KEYWORD_SEARCH: _overview_section,
    IntentType.GENERAL: _overview_section,
}


# ── Assembly ─────────────────────────────────────────────────────


def assemble_context(
    intent: QueryIntent,
    metrics: AggregatedMetrics,
    records: Sequence[CallRecord],
    search_result: Optional[KeywordSearchResult] = None,
    *,
    expander: Optional[KeywordExpander] = None,
    total_before_filter: Optional[int] = None,
    token_budget: Optional[int] = None,
) -> str:
    """
    Build the bounded context document for one question.

    Args:
        intent: Classifier output.
        metrics: Aggregates over ``records``.
        records: The records actually analyzed (after any domain filter).
        search_result: Keyword search output for content searches.
        expander: Used to score transcript examples for content searches.
        total_before_filter: Record count before a domain disposition
            filter, when one was applied.
        token_budget: Overrides ``Settings.context_token_budget``.
    """
    settings = get_settings()
    budget = token_budget if token_budget is not None else settings.context_token_budget
    filtered = total_before_filter is not None and intent.disposition_filter is not None

    context = _header(intent, metrics, total_before_filter if filtered else None)

    if search_result is not None:
        context += _keyword_section(intent, search_result, settings.top_matching_records, filtered)
        if filtered:
            context += _domain_section(metrics, records)
    else:
        examples = select_transcript_examples(
            records,
            intent,
            expander or KeywordExpander(),
            target=settings.transcript_examples,
            excerpt_chars=settings.transcript_excerpt_chars,
        )
        context += _examples_section(examples, intent, filtered)
        context += INTENT_SECTIONS.get(intent.intent, _overview_section)(metrics, records)

    logger.debug("context_assembled", chars=len(context), intent=intent.query_type)
    return truncate_context(context, budget)
