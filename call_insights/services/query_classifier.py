"""
Query Classifier.

Maps a free-text analytics question onto an ``IntentType`` and, for
content searches, extracts the ordered list of search terms.

Matchers run in priority order: enabled domain profiles, then the generic
keyword-search patterns, then the topic keywords, with ``general`` as the
fallback. Adding a vertical means registering a ``DomainProfile``; the
pipeline itself does not change.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from call_insights.config import get_settings
from call_insights.logging_config import get_logger
from call_insights.schemas.query import IntentType, QueryIntent
from call_insights.services.vocabulary import (
    QUERY_FILLER_PATTERN,
    SHORT_KEEP_WORDS,
    DomainProfile,
    load_domain_profiles,
    phrase_vocabulary,
)

logger = get_logger(__name__)

KEYWORD_SEARCH_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(source, re.IGNORECASE)
    for source in (
        r"how many.*calls?.*contain",
        r"how many.*calls?.*mention",
        r"how many.*calls?.*include",
        r"how many.*calls?.*about",
        r"count.*calls?.*contain",
        r"count.*calls?.*mention",
        r"count.*calls?.*with",
        r"search.*for",
        r"find.*calls?.*with",
        r"calls?.*about",
        r"calls?.*regarding",
        r"calls?.*discussing",
        r'".*"',
        r"\b\w+\s+\w+\b.*offer",
        r"\b\w+\s+\w+\b.*issue",
        r"\b\w+\s+\w+\b.*problem",
        r"reasons.*not.*getting",
        r"why.*not.*getting",
        r"problems.*with.*appointment",
    )
)

# First match wins
TOPIC_KEYWORDS: tuple[tuple[IntentType, tuple[str, ...]], ...] = (
    (IntentType.DISPOSITION, ("disposition", "outcome")),
    (IntentType.SENTIMENT, ("sentiment", "satisfaction")),
    (IntentType.AGENT_PERFORMANCE, ("agent", "performance")),
    (IntentType.TIMING, ("time", "duration")),
    (IntentType.QUEUE_ANALYSIS, ("queue", "department")),
    (IntentType.SUMMARY, ("summary", "overview")),
    (IntentType.TRENDS, ("trend", "pattern")),
)
TOPIC_INTENTS = frozenset(intent for intent, _ in TOPIC_KEYWORDS)

COMPLEX_KEYWORDS = ("analyse", "analyze", "compare", "trend", "pattern", "correlation", "deep dive")

FOLLOW_UP_SUGGESTIONS: dict[str, tuple[str, ...]] = {
    IntentType.DISPOSITION.value: (
        "Which agents have the best resolution rates?",
        "How do disposition rates vary by time of day?",
        "What's the correlation between call duration and disposition?",
    ),
    IntentType.AGENT_PERFORMANCE.value: (
        "Show me sentiment trends for top performers",
        "What training topics should we focus on?",
        "How does performance vary by queue?",
    ),
    IntentType.SENTIMENT.value: (
        "Which call topics generate negative sentiment?",
        "How does sentiment correlate with call duration?",
        "What's our sentiment trend over the last month?",
    ),
    IntentType.TIMING.value: (
        "Which queues have the longest wait times?",
        "How can we optimize our staffing schedule?",
        "What's causing our longest calls?",
    ),
}
DEFAULT_FOLLOW_UPS = (
    "Show me an executive summary",
    "What are our biggest improvement opportunities?",
    "How does this compare to last month?",
)

_QUOTED = re.compile(r'"([^"]+)"')
_NON_WORD = re.compile(r"[^\w\s]")


def estimate_complexity(question: str, record_count: int) -> str:
    """Rough ``simple``/``medium``/``complex`` rating for metadata and logs."""
    lowered = question.lower()
    hits = sum(1 for keyword in COMPLEX_KEYWORDS if keyword in lowered)
    if hits >= 2 or record_count > 1000:
        return "complex"
    if hits >= 1 or record_count > 100:
        return "medium"
    return "simple"


def suggest_follow_ups(query_type: str) -> list[str]:
    return list(FOLLOW_UP_SUGGESTIONS.get(query_type, DEFAULT_FOLLOW_UPS))


class QueryClassifier:
    """Ordered intent matching plus search-term extraction."""

    def __init__(
        self,
        profiles: Optional[Iterable[DomainProfile]] = None,
        max_terms: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        if profiles is None:
            profiles = load_domain_profiles(settings.domain_profiles)
        self.profiles = list(profiles)
        self.max_terms = max_terms or settings.max_search_terms
        self._vocabulary = phrase_vocabulary(self.profiles)

    def classify(self, question: str, intent_hint: Optional[str] = None) -> QueryIntent:
        """
        Classify ``question``.

        ``intent_hint`` is only consulted when nothing in the question
        itself matched, and only when it names a topic intent.
        """
        for profile in self.profiles:
            if profile.matches(question):
                return self._domain_intent(question, profile)

        if any(pattern.search(question) for pattern in KEYWORD_SEARCH_PATTERNS):
            return QueryIntent(
                intent=IntentType.KEYWORD_SEARCH,
                question=question,
                is_keyword_search=True,
                search_terms=self.extract_terms(question),
            )

        lowered = question.lower()
        for intent, keywords in TOPIC_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return QueryIntent(intent=intent, question=question)

        hinted = self._hinted_intent(intent_hint)
        if hinted is not None:
            logger.debug("intent_from_hint", hint=intent_hint)
            return QueryIntent(intent=hinted, question=question)

        return QueryIntent(intent=IntentType.GENERAL, question=question)

    def _domain_intent(self, question: str, profile: DomainProfile) -> QueryIntent:
        terms: list[str] = []
        seen: set[str] = set()
        for term in (*profile.seed_terms, *profile.codes_in(question), *self.extract_terms(question)):
            if term.lower() not in seen:
                seen.add(term.lower())
                terms.append(term)

        logger.debug("domain_query_detected", profile=profile.name, terms=len(terms))
        return QueryIntent(
            intent=IntentType.DOMAIN_SEARCH,
            question=question,
            is_keyword_search=True,
            search_terms=terms,
            domain=profile,
            disposition_filter=profile.disposition_filter,
        )

    @staticmethod
    def _hinted_intent(hint: Optional[str]) -> Optional[IntentType]:
        if not hint:
            return None
        try:
            intent = IntentType(hint.strip().lower())
        except ValueError:
            return None
        return intent if intent in TOPIC_INTENTS else None

    # ── Term extraction ──────────────────────────────────────────

    def extract_terms(self, question: str) -> list[str]:
        """
        Ordered search terms: quoted phrases, then longer phrases, then words.

        Returns an empty list when the question holds nothing searchable.
        """
        terms: list[str] = []
        seen: set[str] = set()

        def add(term: str) -> None:
            if term.lower() not in seen:
                seen.add(term.lower())
                terms.append(term)

        quoted = [phrase.strip() for phrase in _QUOTED.findall(question) if phrase.strip()]
        for phrase in quoted:
            add(phrase)
            for word in phrase.split():
                if len(word) > 3 or word.lower() in SHORT_KEEP_WORDS:
                    add(word)

        remainder = _QUOTED.sub(" ", question).lower()
        remainder = QUERY_FILLER_PATTERN.sub(" ", remainder)
        remainder = _NON_WORD.sub(" ", remainder)
        words = [word for word in remainder.split() if len(word) > 2]

        for i in range(len(words) - 1):
            pair = words[i : i + 2]
            phrase2 = " ".join(pair)
            if len(phrase2) > 5 and (
                self._has_vocabulary(pair) or all(len(word) > 4 for word in pair)
            ):
                add(phrase2)
                for word in pair:
                    add(word)

            if i < len(words) - 2:
                triple = words[i : i + 3]
                phrase3 = " ".join(triple)
                if 10 < len(phrase3) < 30 and self._has_vocabulary(triple):
                    add(phrase3)
                    for word in triple:
                        add(word)

        for word in words:
            if len(word) > 3 or word in SHORT_KEEP_WORDS:
                add(word)

        quoted_lower = [phrase.lower() for phrase in quoted]

        def priority(term: str) -> tuple[bool, int, int]:
            from_quote = any(term.lower() in phrase for phrase in quoted_lower)
            return (not from_quote, -len(term.split()), -len(term))

        return sorted(terms, key=priority)[: self.max_terms]

    def _has_vocabulary(self, words: list[str]) -> bool:
        return any(word in self._vocabulary for word in words)
