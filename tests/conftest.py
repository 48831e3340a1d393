"""Shared fixtures for the call insights test suite."""

from __future__ import annotations

import itertools
from typing import Any, Callable

import pytest

from call_insights.config import Settings
from call_insights.schemas.call_record import CallRecord
from call_insights.services.keyword_expansion import KeywordExpander
from call_insights.services.query_classifier import QueryClassifier
from call_insights.services.vocabulary import load_domain_profiles


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        openai_api_key="test-key",
        openai_base_url="https://llm.test/v1",
        supabase_url="https://db.test",
        supabase_service_key="service-key",
    )


@pytest.fixture
def make_record() -> Callable[..., CallRecord]:
    """Factory building ``CallRecord``s from raw row fields."""
    counter = itertools.count(1)

    def _make(**fields: Any) -> CallRecord:
        n = next(counter)
        row: dict[str, Any] = {
            "contact_id": f"call-{n:04d}",
            "agent_username": "agent.smith",
            "queue_name": "Customer Service",
            "disposition_title": "Resolved",
            "initiation_timestamp": "2024-05-01T10:00:00Z",
            "call_duration": 300,
            "total_hold_time": 0,
            "time_in_queue": 20,
            "transcript_text": "",
        }
        row.update(fields)
        return CallRecord.model_validate(row)

    return _make


@pytest.fixture
def profiles():
    return load_domain_profiles(["mobile_fitting", "tire_size"])


@pytest.fixture
def classifier(profiles) -> QueryClassifier:
    return QueryClassifier(profiles=profiles, max_terms=15)


@pytest.fixture
def expander(profiles) -> KeywordExpander:
    return KeywordExpander.from_profiles(profiles)
