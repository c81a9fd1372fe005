"""
Test Module: test_ai_service.py
Description: Tests for the OpenAI-backed reasoning capability.

Tests:
    - JSON response parsing (code fences, non-objects)
    - Unconfigured client behavior
    - Retry on transient errors, no retry on permanent ones
    - Token usage tracking

Author: Smart Financial Coach Team
"""

import pytest
from types import SimpleNamespace

from services.ai_service import (
    AIService,
    ReasoningError,
    MalformedResponseError,
    parse_json_response,
)


def _response(content, tokens=12):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=tokens),
    )


class ScriptedClient:
    """Minimal stand-in for AsyncOpenAI's chat.completions.create()."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.requests.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _service(client):
    service = AIService(api_key="", model="gpt-4o", client=client)
    service.INITIAL_DELAY = 0
    return service


# =============================================================================
# Parsing
# =============================================================================

class TestParseJsonResponse:

    def test_plain_object(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_code_fence_is_stripped(self):
        assert parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}

    @pytest.mark.parametrize("text", ["", "   ", None, "not json", "[1, 2]", '"text"'])
    def test_non_objects_are_malformed(self, text):
        with pytest.raises(MalformedResponseError):
            parse_json_response(text)

    def test_malformed_is_a_reasoning_error(self):
        assert issubclass(MalformedResponseError, ReasoningError)


# =============================================================================
# Calls
# =============================================================================

class TestComplete:

    @pytest.mark.asyncio
    async def test_unconfigured_service_raises(self):
        service = AIService(api_key="")

        assert service.configured is False
        with pytest.raises(ReasoningError):
            await service.complete("system", "user", temperature=0.3, max_tokens=100)

    def test_key_without_prefix_is_not_configured(self):
        assert AIService(api_key="not-a-key").configured is False

    @pytest.mark.asyncio
    async def test_successful_call(self):
        client = ScriptedClient(_response("Hello"))
        service = _service(client)

        text = await service.complete("be nice", "hi", temperature=0.7, max_tokens=800)

        assert text == "Hello"
        request = client.requests[0]
        assert request["model"] == "gpt-4o"
        assert request["temperature"] == 0.7
        assert request["max_tokens"] == 800
        assert request["messages"][0] == {"role": "system", "content": "be nice"}
        assert service.get_usage_stats()["total_tokens"] == 12

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self):
        client = ScriptedClient(Exception("Error code: 429 - rate_limit_exceeded"), _response("ok"))

        text = await _service(client).complete("s", "u", temperature=0.2, max_tokens=10)

        assert text == "ok"
        assert len(client.requests) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        client = ScriptedClient(*[Exception("503 Service Unavailable") for _ in range(4)])

        with pytest.raises(ReasoningError):
            await _service(client).complete("s", "u", temperature=0.2, max_tokens=10)

        assert len(client.requests) == AIService.MAX_RETRIES + 1

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self):
        client = ScriptedClient(Exception("401 invalid api key"), _response("never"))

        with pytest.raises(ReasoningError):
            await _service(client).complete("s", "u", temperature=0.2, max_tokens=10)

        assert len(client.requests) == 1

    @pytest.mark.asyncio
    async def test_empty_content_is_an_error(self):
        client = ScriptedClient(_response(""))

        with pytest.raises(ReasoningError):
            await _service(client).complete("s", "u", temperature=0.2, max_tokens=10)
