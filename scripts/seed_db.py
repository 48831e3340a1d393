"""
Database Seeding Script.

Populates the `call_records` table with sample calls for local testing.
Rows deliberately use the mixed storage shapes found in production
(duration objects, JSON-encoded strings, raw seconds, sentiment arrays).
"""

import asyncio
import json
import os
import sys

# Add project root to path so we can import call_insights
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dotenv import load_dotenv
load_dotenv(".env.local")

from call_insights.config import get_settings
from call_insights.db import get_db
from call_insights.logging_config import setup_logging, get_logger

setup_logging()
logger = get_logger(__name__)

SAMPLE_CALL_RECORDS = [
    {
        "contact_id": "seed-0001",
        "agent_username": "amelia.jones",
        "queue_name": "Customer Service",
        "disposition_title": "Resolved",
        "initiation_timestamp": "2024-05-01T09:12:00Z",
        "call_duration": {"minutes": 6, "seconds": 40},
        "total_hold_time": {"minutes": 0, "seconds": 45},
        "time_in_queue": 32,
        "transcript_text": (
            "Hi, I was charged twice for my order and I'd like a refund please. "
            "I'm sorry about that, I can see the duplicate charge and I've processed the refund now."
        ),
        "sentiment_analysis": [
            {"sentiment": "Positive", "speaker": "customer", "confidence": 0.82, "text": "thank you"},
        ],
        "call_summary": "Duplicate charge refunded.",
    },
    {
        "contact_id": "seed-0002",
        "agent_username": "ravi.patel",
        "queue_name": "Mobile Fitting",
        "disposition_title": "MTF Booked",
        "initiation_timestamp": "2024-05-01T11:03:00Z",
        "call_duration": json.dumps({"minutes": 12, "seconds": 5}),
        "total_hold_time": json.dumps({"minutes": 3, "seconds": 0}),
        "time_in_queue": 95,
        "transcript_text": (
            "Can you come to my house to fit two new tyres? The size is 205/55R16. "
            "Yes, our mobile fitting team has a slot on Thursday morning, shall I book the appointment?"
        ),
        "sentiment_analysis": json.dumps([
            {"sentiment": "Neutral", "speaker": "customer", "confidence": 0.7},
        ]),
    },
    {
        "contact_id": "seed-0003",
        "agent_username": "amelia.jones",
        "queue_name": "Billing",
        "disposition_title": "Escalated",
        "initiation_timestamp": "2024-05-02T14:47:00Z",
        "call_duration": 1260,
        "total_hold_time": 420,
        "time_in_queue": 210,
        "transcript_text": (
            "I've been waiting on hold for twenty minutes and nobody has sorted out my billing problem. "
            "I understand your frustration, let me transfer you to the billing team."
        ),
        "sentiment_analysis": [
            {"sentiment": "Negative", "speaker": "customer", "confidence": 0.91},
        ],
    },
    {
        "contact_id": "seed-0004",
        "agent_username": "li.wei",
        "queue_name": "Mobile Fitting",
        "disposition_title": "MTF Cancelled",
        "initiation_timestamp": "2024-05-03T16:20:00Z",
        "call_duration": {"seconds": 95},
        "total_hold_time": 0,
        "time_in_queue": 15,
        "transcript_text": "I need to cancel my mobile tyre fitting appointment, the 225/45R17 tyres were out of stock.",
        "sentiment_analysis": "Negative",
    },
    {
        "contact_id": "seed-0005",
        "agent_username": "ravi.patel",
        "queue_name": "Customer Service",
        "disposition_title": "Abandoned",
        "initiation_timestamp": "2024-05-03T17:55:00Z",
        "call_duration": {"minutes": 0, "seconds": 40},
        "total_hold_time": None,
        "time_in_queue": 300,
        "transcript_text": "",
        "sentiment_analysis": None,
    },
]


async def seed():
    db = get_db()
    table = get_settings().call_records_table

    logger.info("Seeding database...", table=table)

    for record in SAMPLE_CALL_RECORDS:
        # Check if exists by contact ID
        existing = db.client.table(table).select("contact_id").eq("contact_id", record["contact_id"]).execute()

        if existing.data:
            logger.info("seed_record_skipped", contact_id=record["contact_id"])
        else:
            result = db.client.table(table).insert(record).execute()
            if result.data:
                logger.info("seed_record_created", contact_id=record["contact_id"])
            else:
                logger.error("seed_record_failed", contact_id=record["contact_id"])

    logger.info("Seeding complete.")

if __name__ == "__main__":
    asyncio.run(seed())
