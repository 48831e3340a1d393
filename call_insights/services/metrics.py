"""
Metrics Aggregator.

Single pass over normalized call records, accumulating running totals and
per-key tallies (disposition, sentiment, agent, queue, hour, day) in
mapping accumulators. Percentages and averages are derived after the pass;
an empty record set yields zeros rather than errors.
"""

from __future__ import annotations

import math
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Sequence

from call_insights.logging_config import get_logger
from call_insights.schemas.call_record import CallRecord
from call_insights.schemas.query import (
    AgentMetrics,
    AggregatedMetrics,
    Anomaly,
    Breakdown,
    PerformanceIndicators,
    QueueMetrics,
    TrendPoint,
)

logger = get_logger(__name__)

UNRESOLVED_DISPOSITIONS = frozenset({"Abandoned", "No Answer", "Busy"})
LONG_CALL_SECONDS = 15 * 60
SHORT_CALL_SECONDS = 2 * 60
TOP_DISPOSITIONS = 3

SENTIMENT_SCORES = {"Positive": 1.0, "Neutral": 0.0, "Negative": -1.0}


def is_resolved(record: CallRecord) -> bool:
    return bool(record.disposition_title) and record.disposition_title not in UNRESOLVED_DISPOSITIONS


def median(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[middle - 1] + ordered[middle]) / 2
    return ordered[middle]


def percentile(values: Sequence[float], p: float) -> float:
    """Linear-interpolated percentile, ``p`` in 0..100."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = (p / 100) * (len(ordered) - 1)
    lower, upper = math.floor(index), math.ceil(index)
    weight = index - lower
    return ordered[lower] * (1 - weight) + ordered[upper] * weight


def efficiency_score(resolution_rate: float, avg_duration: float, avg_hold: float) -> float:
    score = resolution_rate * 100 - avg_duration / 60 - avg_hold / 30
    return max(0.0, min(100.0, score))


def _percent(count: int, total: int) -> float:
    return count / total * 100 if total else 0.0


def _top(counter: Counter[str], n: int = TOP_DISPOSITIONS) -> list[str]:
    return [key for key, _ in sorted(counter.items(), key=lambda item: (-item[1], item[0]))[:n]]


@dataclass
class _Group:
    calls: int = 0
    duration: float = 0.0
    hold: float = 0.0
    queue_wait: float = 0.0
    resolved: int = 0
    sentiment: float = 0.0
    dispositions: Counter[str] = field(default_factory=Counter)


def aggregate(records: Sequence[CallRecord]) -> AggregatedMetrics:
    """Compute corpus-wide and grouped statistics in one pass."""
    total = len(records)
    durations: list[float] = []
    hold_total = 0.0
    queue_total = 0.0
    resolved = 0
    long_calls = 0
    short_calls = 0

    dispositions: Counter[str] = Counter()
    sentiments: Counter[str] = Counter()
    hours: Counter[int] = Counter()
    agents: dict[str, _Group] = defaultdict(_Group)
    queues: dict[str, _Group] = defaultdict(_Group)
    days: dict[date, _Group] = defaultdict(_Group)

    for record in records:
        duration = record.call_duration
        durations.append(duration)
        hold_total += record.total_hold_time
        queue_total += record.time_in_queue
        record_resolved = is_resolved(record)
        resolved += record_resolved

        if duration > LONG_CALL_SECONDS:
            long_calls += 1
        if duration < SHORT_CALL_SECONDS:
            short_calls += 1

        dispositions[record.disposition] += 1
        sentiments[record.sentiment] += 1

        agent = agents[record.agent]
        agent.calls += 1
        agent.duration += duration
        agent.hold += record.total_hold_time
        agent.resolved += record_resolved
        agent.sentiment += SENTIMENT_SCORES.get(record.sentiment, 0.0)
        agent.dispositions[record.disposition] += 1

        queue = queues[record.queue]
        queue.calls += 1
        queue.duration += duration
        queue.queue_wait += record.time_in_queue
        queue.dispositions[record.disposition] += 1

        if record.initiation_timestamp is not None:
            hours[record.initiation_timestamp.hour] += 1
            day = days[record.initiation_timestamp.date()]
            day.calls += 1
            day.duration += duration
            day.resolved += record_resolved

    metrics = AggregatedMetrics(
        total_calls=total,
        avg_call_duration=sum(durations) / total if total else 0.0,
        median_call_duration=median(durations),
        p90_call_duration=percentile(durations, 90),
        p95_call_duration=percentile(durations, 95),
        avg_hold_time=hold_total / total if total else 0.0,
        avg_queue_time=queue_total / total if total else 0.0,
        disposition_breakdown={
            key: Breakdown(count=count, percentage=_percent(count, total))
            for key, count in dispositions.most_common()
        },
        sentiment_breakdown={
            key: Breakdown(count=count, percentage=_percent(count, total))
            for key, count in sentiments.most_common()
        },
        agent_metrics={
            name: AgentMetrics(
                total_calls=group.calls,
                avg_duration=group.duration / group.calls,
                avg_hold_time=group.hold / group.calls,
                top_dispositions=_top(group.dispositions),
                sentiment_score=group.sentiment / group.calls * 100,
                resolution_rate=group.resolved / group.calls,
                efficiency_score=efficiency_score(
                    group.resolved / group.calls,
                    group.duration / group.calls,
                    group.hold / group.calls,
                ),
            )
            for name, group in agents.items()
        },
        queue_metrics={
            name: QueueMetrics(
                total_calls=group.calls,
                avg_duration=group.duration / group.calls,
                avg_wait_time=group.queue_wait / group.calls,
                top_dispositions=_top(group.dispositions),
            )
            for name, group in queues.items()
        },
        hourly_distribution=dict(sorted(hours.items())),
        daily_trends={
            day: TrendPoint(
                call_volume=group.calls,
                avg_duration=group.duration / group.calls,
                resolution_rate=group.resolved / group.calls,
            )
            for day, group in sorted(days.items())
        },
        performance=PerformanceIndicators(
            calls_over_15_min=long_calls,
            calls_under_2_min=short_calls,
            pct_over_15_min=_percent(long_calls, total),
            pct_under_2_min=_percent(short_calls, total),
            resolution_rate=_percent(resolved, total),
        ),
    )

    logger.debug(
        "metrics_aggregated",
        total_calls=total,
        agents=len(agents),
        queues=len(queues),
        days=len(days),
    )
    return metrics


def find_anomalies(records: Sequence[CallRecord], metrics: AggregatedMetrics) -> list[Anomaly]:
    """Flag long calls, excessive hold times and overloaded agents."""
    total = len(records)
    if total == 0:
        return []

    anomalies: list[Anomaly] = []

    long_calls = sum(1 for r in records if r.call_duration > metrics.p95_call_duration)
    if long_calls > total * 0.02:
        anomalies.append(
            Anomaly(
                type="duration",
                description=(
                    f"{long_calls} calls exceed 95th percentile duration "
                    f"({round(metrics.p95_call_duration / 60)} min)"
                ),
                severity="high" if long_calls > total * 0.05 else "medium",
                count=long_calls,
            )
        )

    hold_limit = metrics.avg_hold_time * 3
    high_hold = sum(1 for r in records if r.total_hold_time > hold_limit)
    if high_hold:
        anomalies.append(
            Anomaly(
                type="hold_time",
                description=f"{high_hold} calls with excessive hold time (>{round(hold_limit / 60)} min)",
                severity="high" if high_hold > total * 0.1 else "medium",
                count=high_hold,
            )
        )

    if metrics.agent_metrics:
        mean_volume = total / len(metrics.agent_metrics)
        overloaded = sum(1 for a in metrics.agent_metrics.values() if a.total_calls > mean_volume * 2)
        if overloaded:
            anomalies.append(
                Anomaly(
                    type="workload",
                    description=f"{overloaded} agents handling 2x average call volume",
                    severity="medium",
                    count=overloaded,
                )
            )

    return anomalies
