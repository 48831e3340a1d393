"""
Single-call analysis.

Answers a question about one call record by sending the whole normalized
record as JSON to the detail model, through the same retrying completion
client used for dataset questions.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from call_insights.errors import InvalidQueryError
from call_insights.logging_config import get_logger
from call_insights.schemas.call_record import CallRecord
from call_insights.schemas.query import CompletionResult
from call_insights.services.completion import CompletionClient
from call_insights.services.context_builder import format_duration

logger = get_logger(__name__)

DETAIL_TEMPERATURE = 0.3
DETAIL_MAX_TOKENS = 4000

DETAIL_SYSTEM_PROMPT = """You are an AI assistant specialized in analysing individual call center interactions and providing detailed insights.

Call Context:
- Call ID: {call_id}
- Agent: {agent}
- Queue: {queue}
- Duration: {duration}
- Has Transcript: {has_transcript}
- Has Sentiment Analysis: {has_sentiment}
- Has Entities: {has_entities}
- Has Summary: {has_summary}
- Sentiment Segments: {segments}
- Number of Speakers: {speakers}

Analysis Guidelines:
- Provide detailed, specific insights about this individual call
- Focus on call quality, customer experience, and agent performance
- Use the transcript for conversation analysis when it is available
- Use sentiment analysis and entities for deeper insights
- Identify specific moments of excellence or areas for improvement
- Reference specific details from the call and consider duration, hold time and resolution
- Provide actionable feedback for this specific interaction"""

DETAIL_USER_PROMPT = """Please analyse this specific call center interaction and respond to: "{question}"

Call Record Data:
{record_json}

Provide a comprehensive analysis focusing on this individual call with specific insights and actionable recommendations."""


def build_detail_messages(record: CallRecord, question: str) -> list[dict[str, str]]:
    speakers = {entry.speaker for entry in record.sentiment_analysis if entry.speaker}
    system_prompt = DETAIL_SYSTEM_PROMPT.format(
        call_id=record.id,
        agent=record.agent,
        queue=record.queue,
        duration=format_duration(record.call_duration),
        has_transcript=record.has_transcript,
        has_sentiment=bool(record.sentiment_analysis),
        has_entities=bool(record.entities),
        has_summary=bool(record.call_summary),
        segments=len(record.sentiment_analysis),
        speakers=len(speakers),
    )
    user_prompt = DETAIL_USER_PROMPT.format(
        question=question,
        record_json=record.model_dump_json(indent=2, exclude_none=True),
    )
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]


async def analyze_call(
    record: CallRecord,
    question: str,
    completion: CompletionClient,
    cancel_event: Optional[asyncio.Event] = None,
) -> CompletionResult:
    """Ask the detail model ``question`` about ``record``."""
    question = question.strip()
    if not question:
        raise InvalidQueryError("Query is required")

    logger.info("call_detail_query", contact_id=record.contact_id or record.id)
    return await completion.invoke(
        build_detail_messages(record, question),
        model=completion.settings.detail_model,
        cancel_event=cancel_event,
        temperature=DETAIL_TEMPERATURE,
        max_tokens=DETAIL_MAX_TOKENS,
    )
