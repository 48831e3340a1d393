"""
Completion Invoker.

Calls an OpenAI-compatible ``/chat/completions`` endpoint over httpx with:

- exponential backoff on HTTP 429, ``min(base * multiplier**n, cap)``,
  for at most ``max_retries`` retries
- one immediate retry on the fallback model when the primary model
  rejects the request with ``context_length_exceeded``
- no retry for anything else; failures are raised as typed
  ``CallInsightsError`` subclasses so the API layer can pick a status

The retry loop checks an optional ``asyncio.Event`` before and after every
backoff sleep so a caller that went away stops further attempts.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from call_insights.config import Settings, get_settings
from call_insights.errors import (
    CompletionAuthError,
    CompletionCancelledError,
    CompletionRateLimitError,
    CompletionRequestError,
    CompletionServiceError,
    QueryTooComplexError,
)
from call_insights.logging_config import get_logger
from call_insights.schemas.query import CompletionResult

logger = get_logger(__name__)

CONTEXT_LENGTH_CODE = "context_length_exceeded"

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 5
    base_delay_ms: int = 1000
    multiplier: float = 2.0
    max_delay_ms: int = 30000

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
            multiplier=settings.retry_backoff_multiplier,
            max_delay_ms=settings.retry_max_delay_ms,
        )

    def backoff_delay_ms(self, attempt: int) -> int:
        """Delay before retry number ``attempt`` (0-based)."""
        return int(min(self.base_delay_ms * self.multiplier ** attempt, self.max_delay_ms))


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        code = error.get("code") or ""
        return f"{code}: {error.get('message', '')}".strip(": ")
    return response.text[:500]


class CompletionClient:
    """
    Retrying chat-completions client.

    Args:
        http: Shared ``httpx.AsyncClient``. Owned by the caller.
        settings: Defaults to ``get_settings()``.
        sleep: Awaitable taking seconds; injected in tests.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        settings: Optional[Settings] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.http = http
        self.settings = settings or get_settings()
        self.policy = policy or RetryPolicy.from_settings(self.settings)
        self._sleep = sleep

    def backoff_delay_ms(self, attempt: int) -> int:
        return self.policy.backoff_delay_ms(attempt)

    async def invoke(
        self,
        messages: list[dict[str, str]],
        model: Optional[str] = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        """
        Send ``messages`` and return the first choice's text.

        Raises:
            CompletionRateLimitError: still rate limited after all retries.
            QueryTooComplexError: context too large even for the fallback.
            CompletionAuthError: the service rejected the API key.
            CompletionRequestError: any other 400.
            CompletionServiceError: transport failure or other status.
            CompletionCancelledError: ``cancel_event`` was set mid-retry.
        """
        current_model = model or self.settings.completion_model
        downgraded = False
        attempt = 0

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise CompletionCancelledError("The request was cancelled before the answer arrived")

            response = await self._post(messages, current_model, temperature, max_tokens)

            if response.status_code == 200:
                return self._parse(response, current_model)

            if response.status_code == 429:
                if attempt >= self.policy.max_retries:
                    logger.error("completion_retries_exhausted", model=current_model, attempts=attempt + 1)
                    raise CompletionRateLimitError(
                        "The AI service is busy right now and the request was rate limited"
                    )
                delay_ms = self.policy.backoff_delay_ms(attempt)
                logger.warning(
                    "completion_retry_scheduled",
                    model=current_model,
                    attempt=attempt + 1,
                    max_retries=self.policy.max_retries,
                    delay_ms=delay_ms,
                )
                await self._backoff(delay_ms, cancel_event)
                attempt += 1
                continue

            message = _error_message(response)

            if response.status_code == 400 and CONTEXT_LENGTH_CODE in message:
                if current_model == self.settings.completion_model and not downgraded:
                    logger.warning(
                        "completion_model_downgrade",
                        from_model=current_model,
                        to_model=self.settings.fallback_model,
                    )
                    current_model = self.settings.fallback_model
                    downgraded = True
                    continue
                raise QueryTooComplexError(
                    "Query too complex for available models. Please try a more specific question."
                )

            if response.status_code == 401:
                logger.error("completion_auth_failed", model=current_model)
                raise CompletionAuthError("The AI service rejected the configured API key")

            if response.status_code == 400:
                raise CompletionRequestError(f"The AI service rejected the request: {message}")

            logger.error("completion_failed", model=current_model, status=response.status_code, error=message)
            raise CompletionServiceError(
                f"The AI service returned an unexpected error (HTTP {response.status_code})"
            )

    async def _post(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> httpx.Response:
        payload = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens if max_tokens is not None else self.settings.completion_max_tokens,
            "temperature": temperature if temperature is not None else self.settings.completion_temperature,
        }
        try:
            return await self.http.post(
                f"{self.settings.openai_base_url.rstrip('/')}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.settings.openai_api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self.settings.completion_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.error("completion_transport_error", model=model, error=str(e))
            raise CompletionServiceError(f"Could not reach the AI service: {e}") from e

    async def _backoff(self, delay_ms: int, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise CompletionCancelledError("The request was cancelled before the answer arrived")
        await self._sleep(delay_ms / 1000)
        if cancel_event is not None and cancel_event.is_set():
            logger.info("completion_retry_cancelled")
            raise CompletionCancelledError("The request was cancelled before the answer arrived")

    @staticmethod
    def _parse(response: httpx.Response, model: str) -> CompletionResult:
        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise CompletionServiceError("The AI service returned a malformed response") from e

        usage = data.get("usage") or {}
        return CompletionResult(
            text=content,
            model=model,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
        )
