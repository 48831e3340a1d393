"""
Supabase Database Client.

Provides a singleton instance of the Supabase client and typed helpers for
reading call records: paged fetches with server-side filters, count-only
queries, batched fetches for whole-dataset analysis and single-record
lookups. Rows are normalized into ``CallRecord`` on the way out.

Statement timeouts (PostgREST code ``57014``) and transport timeouts raise
``StorageTimeoutError``; every other failure raises ``StorageError``.
The supabase client is synchronous, so each request runs in a worker thread.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, NoReturn, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from call_insights.config import get_settings
from call_insights.errors import RecordNotFoundError, StorageError, StorageTimeoutError
from call_insights.logging_config import get_logger
from call_insights.schemas.call_record import CallRecord, CallRecordPage, Pagination
from call_insights.schemas.query import RecordFilters

logger = get_logger(__name__)

STATEMENT_TIMEOUT_CODE = "57014"
TIMESTAMP_COLUMN = "initiation_timestamp"


def time_window(
    filters: RecordFilters, now: Optional[datetime] = None
) -> tuple[Optional[datetime], Optional[datetime]]:
    """
    Resolve a period preset into a ``[start, end)`` window in UTC.

    ``None`` on either side means unbounded. Unknown presets behave like
    ``all``.
    """
    now = now or datetime.now(timezone.utc)
    today = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo or timezone.utc)

    if filters.period == "today":
        return today, today + timedelta(days=1)
    if filters.period == "yesterday":
        return today - timedelta(days=1), today
    if filters.period == "last7days":
        return today - timedelta(days=7), None
    if filters.period == "lastMonth":
        return today - timedelta(days=30), None
    if filters.period == "dateRange":
        start = _day_start(filters.start_date) if filters.start_date else None
        end = _day_start(filters.end_date) + timedelta(days=1) if filters.end_date else None
        return start, end
    return None, None


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class DatabaseClient:
    """Wrapper around the official Supabase Python client."""

    _instance: Optional[DatabaseClient] = None
    _client: Client

    def __new__(cls, client: Optional[Client] = None) -> DatabaseClient:
        """Singleton, unless an explicit client is supplied (tests, scripts)."""
        if client is not None:
            instance = super().__new__(cls)
            instance._client = client
            return instance

        if cls._instance is None:
            cls._instance = super().__new__(cls)
            settings = get_settings()

            if not settings.supabase_url or not settings.supabase_service_key:
                logger.warning(
                    "Supabase credentials missing. Database operations will fail.",
                    url=bool(settings.supabase_url),
                    key=bool(settings.supabase_service_key),
                )

            try:
                cls._instance._client = create_client(
                    settings.supabase_url,
                    settings.supabase_service_key,
                )
                logger.info("Supabase client initialized", url=settings.supabase_url)
            except Exception as e:
                logger.error("Failed to initialize Supabase client", error=str(e))
                cls._instance = None
                raise

        return cls._instance

    @property
    def client(self) -> Client:
        """Access the raw Supabase client."""
        return self._client

    # ── Query building ───────────────────────────────────────────

    def _filtered(self, query: Any, filters: Optional[RecordFilters]) -> Any:
        if filters is None:
            return query
        start, end = time_window(filters)
        if start is not None:
            query = query.gte(TIMESTAMP_COLUMN, start.isoformat())
        if end is not None:
            query = query.lt(TIMESTAMP_COLUMN, end.isoformat())
        if filters.agent:
            query = query.eq("agent_username", filters.agent)
        if filters.dispositions:
            query = query.in_("disposition_title", filters.dispositions)
        return query

    def _select(self, filters: Optional[RecordFilters], columns: str = "*") -> Any:
        settings = get_settings()
        query = self.client.table(settings.call_records_table).select(columns, count="exact")
        return self._filtered(query, filters)

    @staticmethod
    def _raise_storage_error(e: Exception, operation: str) -> NoReturn:
        if isinstance(e, httpx.TimeoutException) or (
            isinstance(e, APIError) and str(e.code) == STATEMENT_TIMEOUT_CODE
        ):
            logger.error("storage_timeout", operation=operation, error=str(e))
            raise StorageTimeoutError(
                "The call records query took too long. Try a narrower filter."
            ) from e
        logger.error("storage_error", operation=operation, error=str(e))
        raise StorageError("Failed to fetch call records") from e

    # ── Reads ────────────────────────────────────────────────────

    async def fetch_call_records(
        self,
        filters: Optional[RecordFilters] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> CallRecordPage:
        """Fetch one page of records, newest first."""
        settings = get_settings()
        page = max(page, 1)
        limit = min(limit or settings.record_page_size, settings.max_page_size)
        offset = (page - 1) * limit

        try:
            response = await asyncio.to_thread(
                self._select(filters)
                .order(TIMESTAMP_COLUMN, desc=True)
                .range(offset, offset + limit - 1)
                .execute
            )
        except (APIError, httpx.HTTPError) as e:
            self._raise_storage_error(e, "fetch_call_records")

        rows = response.data or []
        total = response.count or 0
        return CallRecordPage(
            data=[CallRecord.model_validate(row) for row in rows],
            pagination=Pagination.for_page(page, limit, total),
        )

    async def count_call_records(self, filters: Optional[RecordFilters] = None) -> int:
        """Count matching records without transferring them."""
        try:
            response = await asyncio.to_thread(self._select(filters, columns="contact_id").limit(1).execute)
        except (APIError, httpx.HTTPError) as e:
            self._raise_storage_error(e, "count_call_records")
        return response.count or 0

    async def fetch_all_call_records(
        self,
        filters: Optional[RecordFilters] = None,
        max_records: Optional[int] = None,
    ) -> tuple[list[CallRecord], int]:
        """
        Fetch every matching record in capped batches.

        Returns:
            The records (at most ``max_records``) and the total number of
            matching rows, which is larger when the cap was hit.
        """
        settings = get_settings()
        cap = max_records or settings.max_records_per_query
        batch_size = settings.max_page_size

        records: list[CallRecord] = []
        total = 0
        offset = 0

        while len(records) < cap:
            size = min(batch_size, cap - len(records))
            try:
                response = await asyncio.to_thread(
                    self._select(filters)
                    .order(TIMESTAMP_COLUMN, desc=True)
                    .range(offset, offset + size - 1)
                    .execute
                )
            except (APIError, httpx.HTTPError) as e:
                self._raise_storage_error(e, "fetch_all_call_records")

            rows = response.data or []
            total = response.count or total
            records.extend(CallRecord.model_validate(row) for row in rows)
            offset += len(rows)
            if len(rows) < size:
                break

        logger.info(
            "call_records_fetched",
            fetched=len(records),
            total=max(total, len(records)),
            capped=len(records) >= cap,
        )
        return records, max(total, len(records))

    async def get_call_record(self, contact_id: str) -> CallRecord:
        """Fetch a single record by contact id."""
        settings = get_settings()
        try:
            response = await asyncio.to_thread(
                self.client.table(settings.call_records_table)
                .select("*")
                .eq("contact_id", contact_id)
                .limit(1)
                .execute
            )
        except (APIError, httpx.HTTPError) as e:
            self._raise_storage_error(e, "get_call_record")

        if not response.data:
            raise RecordNotFoundError(f"Call record {contact_id} was not found")
        return CallRecord.model_validate(response.data[0])


# Global accessor
def get_db() -> DatabaseClient:
    return DatabaseClient()
