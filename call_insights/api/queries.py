"""
API Router: Analytics Query Endpoints.

Answers natural-language questions about the call record set, and about a
single call.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request

from call_insights.db import get_db
from call_insights.errors import CallInsightsError, InvalidQueryError
from call_insights.logging_config import get_logger
from call_insights.schemas.query import (
    CallQuestionRequest,
    CallQuestionResponse,
    QueryRequest,
    QueryResponse,
)
from call_insights.services.call_detail import analyze_call
from call_insights.services.completion import CompletionClient
from call_insights.services.query_cache import QueryCache
from call_insights.services.query_service import QueryService

logger = get_logger(__name__)
router = APIRouter(prefix="/analytics", tags=["Analytics"])

DISCONNECT_POLL_SECONDS = 0.5
UNEXPECTED_ERROR = "An unexpected error occurred while processing your request."


def get_query_cache(request: Request) -> QueryCache[QueryResponse]:
    return request.app.state.query_cache


def get_completion_client(request: Request) -> CompletionClient:
    return request.app.state.completion_client


def get_query_service(
    completion: CompletionClient = Depends(get_completion_client),
    cache: QueryCache[QueryResponse] = Depends(get_query_cache),
) -> QueryService:
    return QueryService(completion=completion, cache=cache)


@asynccontextmanager
async def _cancel_on_disconnect(request: Request) -> AsyncIterator[asyncio.Event]:
    """Set an event once the client goes away so retries stop."""
    event = asyncio.Event()

    async def watch() -> None:
        while not event.is_set():
            if await request.is_disconnected():
                logger.info("client_disconnected", path=request.url.path)
                event.set()
                return
            await asyncio.sleep(DISCONNECT_POLL_SECONDS)

    watcher = asyncio.create_task(watch())
    try:
        yield event
    finally:
        watcher.cancel()


@router.post("/query-calls", response_model=QueryResponse, response_model_by_alias=True)
async def query_calls(
    body: QueryRequest,
    request: Request,
    service: QueryService = Depends(get_query_service),
) -> QueryResponse:
    """Answer a free-text question about the call record set."""
    try:
        async with _cancel_on_disconnect(request) as cancel_event:
            return await service.answer(body, cancel_event=cancel_event)
    except CallInsightsError:
        raise
    except Exception as e:
        logger.error("query_calls_error", error=str(e))
        raise CallInsightsError(UNEXPECTED_ERROR) from e


@router.post(
    "/calls/{contact_id}/query",
    response_model=CallQuestionResponse,
    response_model_by_alias=True,
)
async def query_call_detail(
    contact_id: str,
    body: CallQuestionRequest,
    request: Request,
    completion: CompletionClient = Depends(get_completion_client),
) -> CallQuestionResponse:
    """Answer a question about one call, fetching it when not supplied."""
    try:
        if not body.query.strip():
            raise InvalidQueryError("Query is required")
        record = body.record or await get_db().get_call_record(contact_id)
        async with _cancel_on_disconnect(request) as cancel_event:
            result = await analyze_call(record, body.query, completion, cancel_event=cancel_event)
        return CallQuestionResponse(
            response=result.text or "No response generated",
            metadata={"model": result.model, "tokensUsed": result.total_tokens},
        )
    except CallInsightsError:
        raise
    except Exception as e:
        logger.error("query_call_detail_error", contact_id=contact_id, error=str(e))
        raise CallInsightsError(UNEXPECTED_ERROR) from e
