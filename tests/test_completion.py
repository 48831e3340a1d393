"""Tests for the retrying completion client."""

import asyncio
import json

import httpx
import pytest

from call_insights.errors import (
    CompletionAuthError,
    CompletionCancelledError,
    CompletionRateLimitError,
    CompletionRequestError,
    CompletionServiceError,
    QueryTooComplexError,
)
from call_insights.services.completion import CompletionClient, RetryPolicy

MESSAGES = [{"role": "user", "content": "How many calls?"}]


def ok(text="Answer", total_tokens=42):
    return httpx.Response(
        200,
        json={
            "choices": [{"message": {"role": "assistant", "content": text}}],
            "usage": {"prompt_tokens": 30, "completion_tokens": 12, "total_tokens": total_tokens},
        },
    )


def error(status, code="", message="failed"):
    return httpx.Response(status, json={"error": {"code": code, "message": message}})


class ScriptedTransport:
    """Replays queued responses and records every request body."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    @property
    def models(self):
        return [json.loads(r.content)["model"] for r in self.requests]


class RecordingSleep:
    def __init__(self, on_sleep=None):
        self.calls = []
        self.on_sleep = on_sleep

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.on_sleep:
            self.on_sleep()


@pytest.fixture
def sleeper():
    return RecordingSleep()


def make_client(settings, transport, sleep):
    http = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    return CompletionClient(http, settings=settings, sleep=sleep)


class TestBackoff:
    def test_delays_are_bounded(self):
        policy = RetryPolicy()
        assert [policy.backoff_delay_ms(n) for n in range(5)] == [1000, 2000, 4000, 8000, 16000]
        assert policy.backoff_delay_ms(5) == 30000
        assert policy.backoff_delay_ms(12) == 30000

    def test_policy_from_settings(self, settings):
        policy = RetryPolicy.from_settings(settings)
        assert policy == RetryPolicy(max_retries=5, base_delay_ms=1000, multiplier=2.0, max_delay_ms=30000)


class TestInvoke:
    @pytest.mark.asyncio
    async def test_success(self, settings, sleeper):
        transport = ScriptedTransport(ok())
        client = make_client(settings, transport, sleeper)

        result = await client.invoke(MESSAGES, temperature=0.2, max_tokens=500)

        assert result.text == "Answer"
        assert result.model == "gpt-4o"
        assert result.total_tokens == 42
        request = transport.requests[0]
        assert str(request.url) == "https://llm.test/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer test-key"
        body = json.loads(request.content)
        assert body["temperature"] == 0.2
        assert body["max_tokens"] == 500
        assert body["messages"] == MESSAGES
        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_rate_limited_twice_then_success(self, settings, sleeper):
        transport = ScriptedTransport(error(429), error(429), ok("Recovered"))
        client = make_client(settings, transport, sleeper)

        result = await client.invoke(MESSAGES)

        assert result.text == "Recovered"
        assert len(transport.requests) == 3
        assert sleeper.calls == [1.0, 2.0]
        assert sum(sleeper.calls) >= 3.0

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, settings, sleeper):
        transport = ScriptedTransport(error(429))
        client = make_client(settings, transport, sleeper)

        with pytest.raises(CompletionRateLimitError) as exc_info:
            await client.invoke(MESSAGES)

        assert exc_info.value.status_code == 429
        assert len(transport.requests) == 6
        assert sleeper.calls == [1.0, 2.0, 4.0, 8.0, 16.0]

    @pytest.mark.asyncio
    async def test_auth_failure_is_not_retried(self, settings, sleeper):
        transport = ScriptedTransport(error(401, message="bad key"))
        client = make_client(settings, transport, sleeper)

        with pytest.raises(CompletionAuthError):
            await client.invoke(MESSAGES)

        assert len(transport.requests) == 1
        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_context_length_downgrades_once(self, settings, sleeper):
        transport = ScriptedTransport(error(400, "context_length_exceeded", "too long"), ok())
        client = make_client(settings, transport, sleeper)

        result = await client.invoke(MESSAGES)

        assert transport.models == ["gpt-4o", "gpt-4o-mini"]
        assert result.model == "gpt-4o-mini"
        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_context_length_on_fallback_is_too_complex(self, settings, sleeper):
        transport = ScriptedTransport(error(400, "context_length_exceeded", "too long"))
        client = make_client(settings, transport, sleeper)

        with pytest.raises(QueryTooComplexError) as exc_info:
            await client.invoke(MESSAGES)

        assert exc_info.value.status_code == 400
        assert transport.models == ["gpt-4o", "gpt-4o-mini"]

    @pytest.mark.asyncio
    async def test_context_length_on_other_model_is_not_downgraded(self, settings, sleeper):
        transport = ScriptedTransport(error(400, "context_length_exceeded", "too long"))
        client = make_client(settings, transport, sleeper)

        with pytest.raises(QueryTooComplexError):
            await client.invoke(MESSAGES, model="gpt-4.1")

        assert transport.models == ["gpt-4.1"]

    @pytest.mark.asyncio
    async def test_other_bad_request(self, settings, sleeper):
        client = make_client(settings, ScriptedTransport(error(400, "invalid_request_error")), sleeper)

        with pytest.raises(CompletionRequestError):
            await client.invoke(MESSAGES)

    @pytest.mark.asyncio
    async def test_server_error(self, settings, sleeper):
        client = make_client(settings, ScriptedTransport(httpx.Response(503, text="unavailable")), sleeper)

        with pytest.raises(CompletionServiceError) as exc_info:
            await client.invoke(MESSAGES)

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_transport_error(self, settings, sleeper):
        client = make_client(settings, ScriptedTransport(httpx.ConnectError("refused")), sleeper)

        with pytest.raises(CompletionServiceError):
            await client.invoke(MESSAGES)

    @pytest.mark.asyncio
    async def test_malformed_body(self, settings, sleeper):
        client = make_client(settings, ScriptedTransport(httpx.Response(200, json={"choices": []})), sleeper)

        with pytest.raises(CompletionServiceError):
            await client.invoke(MESSAGES)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_first_attempt(self, settings, sleeper):
        transport = ScriptedTransport(ok())
        client = make_client(settings, transport, sleeper)
        event = asyncio.Event()
        event.set()

        with pytest.raises(CompletionCancelledError):
            await client.invoke(MESSAGES, cancel_event=event)

        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_cancelled_during_backoff(self, settings):
        event = asyncio.Event()
        sleeper = RecordingSleep(on_sleep=event.set)
        transport = ScriptedTransport(error(429), ok())
        client = make_client(settings, transport, sleeper)

        with pytest.raises(CompletionCancelledError):
            await client.invoke(MESSAGES, cancel_event=event)

        assert len(transport.requests) == 1
        assert sleeper.calls == [1.0]
