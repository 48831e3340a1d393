"""Tests for the Supabase record source."""

import threading
from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from call_insights.db import DatabaseClient, time_window
from call_insights.errors import RecordNotFoundError, StorageError, StorageTimeoutError
from call_insights.schemas.query import RecordFilters

BUILDER_METHODS = ("select", "gte", "lt", "eq", "in_", "order", "range", "limit")

NOW = datetime(2024, 5, 10, 15, 30, tzinfo=timezone.utc)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def row(n, **fields):
    base = {
        "contact_id": f"c-{n}",
        "agent_username": "agent.smith",
        "disposition_title": "Resolved",
        "call_duration": {"minutes": 1, "seconds": 0},
        "transcript_text": "hello",
    }
    base.update(fields)
    return base


@pytest.fixture
def query():
    """A PostgREST builder stub where every builder call returns itself."""
    builder = MagicMock()
    for name in BUILDER_METHODS:
        getattr(builder, name).return_value = builder
    builder.execute.return_value = MagicMock(data=[], count=0)
    return builder


@pytest.fixture
def db(query):
    client = MagicMock()
    client.table.return_value = query
    return DatabaseClient(client=client)


class TestTimeWindow:
    @pytest.mark.parametrize(
        ("period", "expected"),
        [
            ("today", (utc(2024, 5, 10), utc(2024, 5, 11))),
            ("yesterday", (utc(2024, 5, 9), utc(2024, 5, 10))),
            ("last7days", (utc(2024, 5, 3), None)),
            ("lastMonth", (utc(2024, 4, 10), None)),
            ("all", (None, None)),
            ("someday", (None, None)),
        ],
    )
    def test_presets(self, period, expected):
        assert time_window(RecordFilters(period=period), now=NOW) == expected

    def test_date_range_is_end_inclusive_by_day(self):
        filters = RecordFilters(period="dateRange", start_date=date(2024, 5, 1), end_date=date(2024, 5, 3))
        assert time_window(filters, now=NOW) == (utc(2024, 5, 1), utc(2024, 5, 4))

    def test_open_date_range(self):
        filters = RecordFilters(period="dateRange", start_date=date(2024, 5, 1))
        assert time_window(filters, now=NOW) == (utc(2024, 5, 1), None)


class TestDatabaseClient:
    def test_explicit_client_is_not_the_singleton(self, db):
        other = DatabaseClient(client=MagicMock())
        assert other is not db
        assert DatabaseClient._instance is not db

    @pytest.mark.asyncio
    async def test_fetch_page(self, db, query):
        query.execute.return_value = MagicMock(data=[row(1), row(2)], count=25)

        page = await db.fetch_call_records(page=2, limit=10)

        query.order.assert_called_once_with("initiation_timestamp", desc=True)
        query.range.assert_called_once_with(10, 19)
        assert [r.id for r in page.data] == ["c-1", "c-2"]
        assert page.data[0].call_duration == 60
        assert page.pagination.total == 25
        assert page.pagination.total_pages == 3
        assert page.pagination.has_next is True
        assert page.pagination.has_prev is True
        assert page.pagination.model_dump(by_alias=True)["totalPages"] == 3

    @pytest.mark.asyncio
    async def test_page_size_is_capped(self, db, query):
        await db.fetch_call_records(limit=50_000)

        query.range.assert_called_once_with(0, 999)

    @pytest.mark.asyncio
    async def test_filters_applied(self, db, query):
        filters = RecordFilters(agent="ana", dispositions=["Resolved", "Escalated"])

        await db.fetch_call_records(filters)

        query.eq.assert_called_once_with("agent_username", "ana")
        query.in_.assert_called_once_with("disposition_title", ["Resolved", "Escalated"])
        query.gte.assert_not_called()
        query.lt.assert_not_called()

    @pytest.mark.asyncio
    async def test_time_filter_applied(self, db, query):
        filters = RecordFilters(period="dateRange", start_date=date(2024, 5, 1), end_date=date(2024, 5, 1))

        await db.fetch_call_records(filters)

        query.gte.assert_called_once_with("initiation_timestamp", "2024-05-01T00:00:00+00:00")
        query.lt.assert_called_once_with("initiation_timestamp", "2024-05-02T00:00:00+00:00")

    @pytest.mark.asyncio
    async def test_count(self, db, query):
        query.execute.return_value = MagicMock(data=[{"contact_id": "c-1"}], count=1234)

        assert await db.count_call_records() == 1234
        query.select.assert_called_once_with("contact_id", count="exact")

    @pytest.mark.asyncio
    async def test_fetch_all_stops_at_cap(self, db, query):
        query.execute.return_value = MagicMock(data=[row(i) for i in range(5)], count=12)

        records, total = await db.fetch_all_call_records(max_records=5)

        assert len(records) == 5
        assert total == 12
        query.range.assert_called_once_with(0, 4)

    @pytest.mark.asyncio
    async def test_fetch_all_stops_on_short_batch(self, db, query):
        query.execute.return_value = MagicMock(data=[row(i) for i in range(3)], count=3)

        records, total = await db.fetch_all_call_records(max_records=10)

        assert len(records) == 3
        assert total == 3

    @pytest.mark.asyncio
    async def test_queries_run_off_the_event_loop_thread(self, db, query):
        threads = []

        def execute():
            threads.append(threading.get_ident())
            return MagicMock(data=[row(i) for i in range(2)], count=2)

        query.execute.side_effect = execute

        records, _ = await db.fetch_all_call_records(max_records=10)
        await db.count_call_records()

        assert len(records) == 2
        assert len(threads) == 2
        assert threading.get_ident() not in threads

    @pytest.mark.asyncio
    async def test_get_call_record(self, db, query):
        query.execute.return_value = MagicMock(data=[row(7)], count=None)

        record = await db.get_call_record("c-7")

        query.eq.assert_called_once_with("contact_id", "c-7")
        assert record.id == "c-7"

    @pytest.mark.asyncio
    async def test_get_call_record_not_found(self, db):
        with pytest.raises(RecordNotFoundError) as exc_info:
            await db.get_call_record("missing")
        assert exc_info.value.status_code == 404


class TestStorageErrors:
    @pytest.mark.asyncio
    async def test_statement_timeout(self, db, query):
        query.execute.side_effect = APIError(
            {"code": "57014", "message": "canceling statement due to statement timeout"}
        )

        with pytest.raises(StorageTimeoutError) as exc_info:
            await db.fetch_call_records()

        assert exc_info.value.status_code == 408
        assert isinstance(exc_info.value.__cause__, APIError)

    @pytest.mark.asyncio
    async def test_transport_timeout(self, db, query):
        query.execute.side_effect = httpx.ReadTimeout("timed out")

        with pytest.raises(StorageTimeoutError):
            await db.fetch_all_call_records()

    @pytest.mark.asyncio
    async def test_other_storage_error(self, db, query):
        query.execute.side_effect = APIError({"code": "42P01", "message": "relation does not exist"})

        with pytest.raises(StorageError) as exc_info:
            await db.count_call_records()

        assert exc_info.value.status_code == 500
