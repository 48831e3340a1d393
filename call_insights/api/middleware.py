"""
API Middleware.

Request ID injection, per-client rate limiting, and structured access
logging for every incoming API request.
"""

from __future__ import annotations

import json
import time
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from call_insights.config import get_settings
from call_insights.logging_config import generate_trace_id, get_logger, trace_id_var

logger = get_logger(__name__)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Inject a unique request ID into every request and response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID", generate_trace_id())
        trace_id_var.set(request_id)

        start = time.monotonic()

        response = await call_next(request)

        elapsed_ms = round((time.monotonic() - start) * 1000, 1)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = str(elapsed_ms)

        logger.info(
            "api_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            elapsed_ms=elapsed_ms,
            request_id=request_id,
        )

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window request limiter per client IP.

    State lives on the middleware instance, so it is per process; a
    multi-instance deployment needs a shared store.
    """

    def __init__(
        self,
        app: ASGIApp,
        window_seconds: Optional[int] = None,
        max_requests: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(app)
        settings = get_settings()
        self.window_seconds = window_seconds or settings.rate_limit_window_seconds
        self.max_requests = max_requests or settings.rate_limit_max_requests
        self._clock = clock
        self._hits: dict[str, list[float]] = {}
        self._last_sweep = clock()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        client_ip = request.client.host if request.client else "unknown"
        now = self._clock()

        if now - self._last_sweep >= self.window_seconds:
            self._sweep(now)

        hits = [t for t in self._hits.get(client_ip, ()) if now - t < self.window_seconds]
        self._hits[client_ip] = hits

        if len(hits) >= self.max_requests:
            logger.warning("rate_limit_exceeded", client_ip=client_ip)
            body = {
                "error": "Rate limit exceeded",
                "kind": "rate_limited",
                "suggestions": [
                    "Wait a minute and try again",
                    "Ask fewer questions in quick succession",
                ],
            }
            return Response(
                content=json.dumps(body),
                status_code=429,
                media_type="application/json",
                headers={"Retry-After": str(self.window_seconds)},
            )

        hits.append(now)
        return await call_next(request)

    def _sweep(self, now: float) -> None:
        """Drop clients with no hits inside the current window."""
        stale = [
            ip for ip, hits in self._hits.items()
            if not hits or now - hits[-1] >= self.window_seconds
        ]
        for ip in stale:
            del self._hits[ip]
        self._last_sweep = now

    @property
    def tracked_clients(self) -> int:
        return len(self._hits)
