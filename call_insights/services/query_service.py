"""
Query Service.

Runs one analytics question end to end:

1. validate the question and resolve the record set (request body, or
   the record source with server-side filters)
2. classify, then apply any domain disposition filter
3. refuse content searches over a partial sample, since counts would be wrong
4. consult the query cache
5. keyword search (content searches) and metrics aggregation
6. assemble the bounded context and invoke the completion service

Each request owns its record list; nothing here mutates shared state other
than the injected cache.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional, Sequence

from call_insights.db import DatabaseClient, get_db
from call_insights.errors import InsufficientDataError, InvalidQueryError
from call_insights.logging_config import generate_trace_id, get_logger, query_id_var
from call_insights.schemas.call_record import CallRecord
from call_insights.schemas.query import (
    IntentType,
    KeywordSearchResult,
    KeywordSearchSummary,
    QueryIntent,
    QueryMetadata,
    QueryRequest,
    QueryResponse,
)
from call_insights.services.completion import CompletionClient
from call_insights.services.context_builder import assemble_context
from call_insights.services.keyword_expansion import KeywordExpander
from call_insights.services.metrics import aggregate
from call_insights.services.query_cache import QueryCache, make_cache_key
from call_insights.services.query_classifier import (
    QueryClassifier,
    estimate_complexity,
    suggest_follow_ups,
)
from call_insights.services.transcript_search import search_transcripts

logger = get_logger(__name__)

EMPTY_ANSWER = "Unable to generate response. Please try rephrasing your question."

SYSTEM_PROMPT = """You are an expert call center analytics assistant. Keyword searches you are given use expanded matching that includes plurals, synonyms, word variations and fuzzy matching of minor typos.

Key Guidelines:
- Provide specific numbers, percentages, and trends
- When transcript examples are provided, reference them to support your analysis with concrete evidence
- For keyword searches, start with the key statistics: "X calls (Y.Z% of all calls) contained variations of the searched keywords", and also state the percentage of calls that had transcripts
- When search terms were expanded (e.g. "refund" also matching "refunds", "reimbursement", "return"), say so briefly
- When the data was filtered to a subset of calls, clearly state the scope of the analysis and what share of all calls it represents
- Highlight actionable recommendations based on both metrics and conversation patterns
- Include both positive insights and improvement opportunities when discussing performance
- Use professional language and format responses with clear headers and bullet points
- If data seems incomplete, mention the limitations but still provide the insights the data supports

Always structure your response with:
1. Direct answer to the question
2. Brief explanation of the matching or filtering applied, if any
3. Supporting data and statistics
4. Key insights or patterns
5. Actionable recommendations (when relevant)"""

USER_PROMPT = """Based on the following call center data, please answer this question: "{question}"

{context}

Please provide a comprehensive analysis with specific metrics and actionable insights."""


def build_messages(
    question: str, context: str, intent: QueryIntent, filtered: bool
) -> list[dict[str, str]]:
    user_prompt = USER_PROMPT.format(question=question, context=context)
    if intent.domain is not None and intent.domain.prompt_hint:
        user_prompt += " " + intent.domain.prompt_hint
    if filtered and intent.disposition_filter:
        user_prompt += (
            f" IMPORTANT: This analysis is limited to {intent.disposition_filter.upper()} calls only;"
            " clearly state this limitation in your response."
        )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]


def _search_summary(result: KeywordSearchResult) -> KeywordSearchSummary:
    return KeywordSearchSummary(
        total_matches=result.total_matches,
        records_with_matches=len(result.matching_records),
        records_with_transcripts=result.stats.records_with_transcripts,
        percentage_of_total_calls=round(result.percentage_of_total_calls, 1),
        percentage_of_transcribed_calls=round(result.stats.match_percentage, 1),
        search_terms=result.search_terms,
        expanded_terms=len(result.expanded_terms),
    )


class QueryService:
    """End-to-end question answering over call records."""

    def __init__(
        self,
        completion: CompletionClient,
        cache: Optional[QueryCache[QueryResponse]] = None,
        db: Optional[DatabaseClient] = None,
        classifier: Optional[QueryClassifier] = None,
        expander: Optional[KeywordExpander] = None,
    ) -> None:
        self.completion = completion
        self.cache = cache
        self._db = db
        self.classifier = classifier or QueryClassifier()
        self.expander = expander or KeywordExpander.from_profiles(self.classifier.profiles)

    @property
    def db(self) -> DatabaseClient:
        if self._db is None:
            self._db = get_db()
        return self._db

    async def answer(
        self,
        request: QueryRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> QueryResponse:
        question = request.query.strip()
        if not question:
            raise InvalidQueryError("Query is required")

        query_id_var.set(generate_trace_id())
        started = time.monotonic()

        records, total_available = await self._resolve_records(request)
        if not records:
            raise InsufficientDataError("No call records available for analysis")

        intent = self.classifier.classify(question, request.intent_hint)
        logger.info(
            "query_classified",
            query_type=intent.query_type,
            keyword_search=intent.is_keyword_search,
            terms=intent.search_terms,
            records=len(records),
        )

        analyzed, total_before_filter = self._apply_domain_filter(intent, records)
        filtered = total_before_filter is not None

        if intent.is_keyword_search and total_available > len(records):
            raise InsufficientDataError(
                f"Keyword counts need the full dataset, but only {len(records)} of "
                f"{total_available} records were provided"
            )

        scope = intent.query_type
        if request.filters is not None:
            scope += ":" + request.filters.model_dump_json()
        cache_key = make_cache_key(question, len(analyzed), scope)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info("query_cache_hit", query_type=intent.query_type)
                return cached.model_copy(
                    update={"metadata": cached.metadata.model_copy(update={"cached": True})}
                )

        search_result: Optional[KeywordSearchResult] = None
        if intent.is_keyword_search:
            expanded = self.expander.expand_terms(intent.search_terms)
            search_result = search_transcripts(analyzed, expanded, intent.search_terms)

        metrics = aggregate(analyzed)
        context = assemble_context(
            intent,
            metrics,
            analyzed,
            search_result,
            expander=self.expander,
            total_before_filter=total_before_filter,
        )

        result = await self.completion.invoke(
            build_messages(question, context, intent, filtered),
            cancel_event=cancel_event,
        )

        metadata = QueryMetadata(
            model=result.model,
            tokens_used=result.total_tokens,
            data_points=len(analyzed),
            transcripts_available=sum(1 for r in analyzed if r.has_transcript),
            processing_time=int((time.monotonic() - started) * 1000),
            query_type=intent.query_type,
            complexity=estimate_complexity(question, len(analyzed)),
            is_filtered=filtered,
            total_records_before_filter=total_before_filter,
            follow_up_suggestions=suggest_follow_ups(
                intent.intent.value if intent.intent is not IntentType.DOMAIN_SEARCH else intent.query_type
            ),
            keyword_search_summary=_search_summary(search_result) if search_result else None,
        )
        response = QueryResponse(response=result.text or EMPTY_ANSWER, metadata=metadata)

        if self.cache is not None:
            self.cache.set(cache_key, response)

        logger.info(
            "query_answered",
            query_type=intent.query_type,
            model=result.model,
            tokens=result.total_tokens,
            processing_ms=metadata.processing_time,
        )
        return response

    async def _resolve_records(self, request: QueryRequest) -> tuple[list[CallRecord], int]:
        """Records to analyze plus the size of the dataset they came from."""
        if request.records is not None:
            records = list(request.records)
            total = max(request.total_records or 0, len(records))
            return records, total
        return await self.db.fetch_all_call_records(request.filters)

    @staticmethod
    def _apply_domain_filter(
        intent: QueryIntent, records: Sequence[CallRecord]
    ) -> tuple[list[CallRecord], Optional[int]]:
        if not intent.disposition_filter:
            return list(records), None

        needle = intent.disposition_filter.lower()
        matching = [r for r in records if needle in (r.disposition_title or "").lower()]
        label = intent.disposition_filter.upper()
        if not matching:
            raise InsufficientDataError(
                f"No {label} calls found in the dataset. Check that disposition titles contain \"{label}\".",
                suggestions=[
                    f"Verify that these calls are categorized with \"{label}\" in the disposition title",
                    "Widen the date range or remove filters",
                ],
            )

        logger.info(
            "domain_filter_applied",
            filter=intent.disposition_filter,
            before=len(records),
            after=len(matching),
        )
        return matching, len(records)
