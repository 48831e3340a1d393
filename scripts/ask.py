"""
CLI tool to ask an analytics question without running the API server.

Usage:
    python scripts/ask.py "<question>" [--period last7days] [--agent NAME]
    python scripts/ask.py "<question>" --contact-id <contact_id>

Examples:
    # Question over every record from the last week
    python scripts/ask.py "How many calls mention refund?" --period last7days

    # Question about a single call
    python scripts/ask.py "Was the customer's issue resolved?" --contact-id seed-0001
"""

import argparse
import asyncio
import json
import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dotenv import load_dotenv
load_dotenv(".env.local")

import httpx

from call_insights.config import get_settings
from call_insights.db import get_db
from call_insights.errors import CallInsightsError
from call_insights.logging_config import setup_logging, get_logger
from call_insights.schemas.query import QueryRequest, RecordFilters
from call_insights.services.call_detail import analyze_call
from call_insights.services.completion import CompletionClient
from call_insights.services.query_service import QueryService

setup_logging()
logger = get_logger(__name__)


async def ask(
    question: str,
    period: str = "all",
    agent: str | None = None,
    contact_id: str | None = None,
) -> None:
    """Answer one question and print the result."""
    settings = get_settings()

    async with httpx.AsyncClient(timeout=settings.completion_timeout_seconds) as http:
        completion = CompletionClient(http, settings=settings)
        try:
            if contact_id:
                record = await get_db().get_call_record(contact_id)
                result = await analyze_call(record, question, completion)
                print(result.text)
                print(f"\n[model={result.model} tokens={result.total_tokens}]")
                return

            service = QueryService(completion=completion)
            response = await service.answer(
                QueryRequest(query=question, filters=RecordFilters(period=period, agent=agent))
            )
        except CallInsightsError as e:
            print(f"Error ({e.kind}): {e.message}")
            for suggestion in e.suggestions:
                print(f"  - {suggestion}")
            return

    print(response.response)
    print()
    print(json.dumps(response.metadata.model_dump(by_alias=True, exclude_none=True), indent=2))


def main() -> None:
    parser = argparse.ArgumentParser(description="Ask an analytics question about call records")
    parser.add_argument("question", help="Natural-language question")
    parser.add_argument(
        "--period",
        default="all",
        choices=["all", "today", "yesterday", "last7days", "lastMonth"],
        help="Time window for the records analyzed",
    )
    parser.add_argument("--agent", help="Only analyze calls handled by this agent")
    parser.add_argument("--contact-id", help="Ask about a single call instead of the whole dataset")

    args = parser.parse_args()

    if not args.question.strip():
        parser.error("Question must not be empty")

    asyncio.run(ask(
        question=args.question,
        period=args.period,
        agent=args.agent,
        contact_id=args.contact_id,
    ))


if __name__ == "__main__":
    main()
