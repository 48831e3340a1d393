"""
Transcript Search Engine.

Scans the transcripts of a record set for every expanded variant of the
search terms. Each variant is compiled once per search; the matching
strategy depends on its shape:

- phrases tolerate up to two filler words between their words
- words of three characters or fewer, and structured codes such as
  ``205/55R16``, match as exact whole words
- longer words also match with one extra character inserted (typos)

Records without a transcript are never scanned but still count towards
``total_records_searched``.
"""

from __future__ import annotations

import re
from typing import Iterable, Mapping, Sequence

from call_insights.logging_config import get_logger
from call_insights.schemas.call_record import CallRecord
from call_insights.schemas.query import KeywordMatch, KeywordSearchResult, SearchStats

logger = get_logger(__name__)

MAX_SNIPPETS_PER_RECORD = 3
SNIPPET_RADIUS = 60
SHORT_TERM_LENGTH = 3

# Punctuation other than hyphen/apostrophe marks a structured code
_STRUCTURED = re.compile(r"[^\w\s'\-]")
_PHRASE_GAP = r"\s+(?:\w+\s+){0,2}"


def build_variant_pattern(variant: str) -> re.Pattern[str]:
    """Compile the case-insensitive matcher for one variant."""
    words = variant.split()
    if len(words) > 1:
        body = _PHRASE_GAP.join(re.escape(word) for word in words)
    elif len(variant) <= SHORT_TERM_LENGTH or _STRUCTURED.search(variant):
        body = re.escape(variant)
    else:
        alternatives = [re.escape(variant)] + [
            re.escape(variant[:i]) + r"\w" + re.escape(variant[i:])
            for i in range(1, len(variant))
        ]
        body = "(?:" + "|".join(alternatives) + ")"
    return re.compile(rf"(?<!\w){body}(?!\w)", re.IGNORECASE)


def _snippet(text: str, start: int, end: int) -> str:
    window_start = max(0, start - SNIPPET_RADIUS)
    window_end = min(len(text), end + SNIPPET_RADIUS)
    marked = f"{text[window_start:start]}**{text[start:end]}**{text[end:window_end]}"
    return "..." + " ".join(marked.split()) + "..."


def _ordered_variants(
    search_terms: Sequence[str], expanded: Mapping[str, Sequence[str]]
) -> list[str]:
    """Union of all variants, first occurrence wins, case-insensitively."""
    ordered: list[str] = []
    seen: set[str] = set()
    for term in search_terms:
        for variant in expanded.get(term) or [term]:
            key = variant.lower()
            if variant.strip() and key not in seen:
                seen.add(key)
                ordered.append(variant)
    return ordered


def search_transcripts(
    records: Sequence[CallRecord],
    expanded_terms_by_original: Mapping[str, Sequence[str]],
    search_terms: Iterable[str] | None = None,
) -> KeywordSearchResult:
    """
    Count variant occurrences per record and collect highlighted snippets.

    Args:
        records: Records to scan.
        expanded_terms_by_original: original term -> its variants.
        search_terms: Original terms in priority order. Defaults to the
            mapping's key order.

    Returns:
        KeywordSearchResult with matching records ranked by match count,
        then by number of distinct variants matched.
    """
    terms = list(search_terms) if search_terms is not None else list(expanded_terms_by_original)
    variants = _ordered_variants(terms, expanded_terms_by_original)
    compiled = [(variant, build_variant_pattern(variant)) for variant in variants]

    transcribed = [record for record in records if record.has_transcript]
    matches: list[KeywordMatch] = []
    total_matches = 0

    for record in transcribed:
        text = record.transcript_text
        match_count = 0
        matched_variants: list[str] = []
        snippets: list[str] = []
        reported: list[tuple[int, int]] = []

        for variant, pattern in compiled:
            hits = list(pattern.finditer(text))
            if not hits:
                continue
            match_count += len(hits)
            matched_variants.append(variant)

            for hit in hits:
                if len(snippets) >= MAX_SNIPPETS_PER_RECORD:
                    break
                start, end = hit.span()
                if any(start < seen_end and end > seen_start for seen_start, seen_end in reported):
                    continue
                reported.append((max(0, start - SNIPPET_RADIUS), min(len(text), end + SNIPPET_RADIUS)))
                snippets.append(_snippet(text, start, end))

        if match_count:
            total_matches += match_count
            matches.append(
                KeywordMatch(
                    record_id=record.id,
                    agent=record.agent,
                    disposition=record.disposition,
                    sentiment=record.sentiment,
                    duration=record.call_duration,
                    snippets=snippets,
                    match_count=match_count,
                    matched_variants=matched_variants,
                )
            )

    matches.sort(key=lambda m: (-m.match_count, -len(m.matched_variants)))

    with_transcripts = len(transcribed)
    stats = SearchStats(
        total_records_searched=len(records),
        records_with_transcripts=with_transcripts,
        match_percentage=(len(matches) / with_transcripts * 100) if with_transcripts else 0.0,
    )

    logger.info(
        "keyword_search_complete",
        terms=len(terms),
        variants=len(variants),
        total_matches=total_matches,
        matching_records=len(matches),
        records_searched=len(records),
        records_with_transcripts=with_transcripts,
    )

    return KeywordSearchResult(
        total_matches=total_matches,
        search_terms=terms,
        expanded_terms=variants,
        expanded_by_term={term: list(expanded_terms_by_original.get(term) or [term]) for term in terms},
        matching_records=matches,
        stats=stats,
    )
