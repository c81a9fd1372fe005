"""
OpenAI-backed reasoning capability with retry logic and error handling.

Features:
    - Exponential backoff retry for transient failures
    - Rate limit handling (429 errors)
    - Token usage tracking
    - A single error type (ReasoningError) for every way a call can fail

Callers treat the returned text as untrusted: structured responses go through
parse_json_response() and then a pydantic schema.

Author: Smart Financial Coach Team
"""

import os
import re
import json
import time
import asyncio
from typing import Optional, Protocol
from dotenv import load_dotenv

from .observability import logger, metrics, log_reasoning_call

load_dotenv()


class ReasoningError(Exception):
    """The reasoning capability could not produce usable text."""


class MalformedResponseError(ReasoningError):
    """The response was not the JSON object the caller asked for."""


class ReasoningCapability(Protocol):
    async def complete(
        self,
        system_instruction: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        ...


_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def parse_json_response(text: Optional[str]) -> dict:
    """
    Decode a model response that should be a JSON object.

    Tolerates a surrounding Markdown code fence; anything else that is not a
    JSON object raises MalformedResponseError.
    """
    if not text or not text.strip():
        raise MalformedResponseError("Empty response")

    stripped = text.strip()
    fenced = _CODE_FENCE.match(stripped)
    if fenced:
        stripped = fenced.group(1)

    try:
        data = json.loads(stripped)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedResponseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class AIService:
    """
    Wrapper for the OpenAI chat API implementing ReasoningCapability.

    Features:
        - Automatic retry with exponential backoff
        - Rate limit (429) handling
        - Token usage tracking
    """

    MAX_RETRIES = 3
    INITIAL_DELAY = 1.0
    MAX_DELAY = 60.0

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client=None):
        raw_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY", "")
        self.api_key = raw_key.strip() if raw_key else None
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-4o")
        self.timeout = float(os.getenv("OPENAI_TIMEOUT", "30"))
        self.client = client

        self.total_tokens_used = 0
        self.request_count = 0

        if self.client is None:
            if self.api_key and self.api_key.startswith("sk-"):
                from openai import AsyncOpenAI
                self.client = AsyncOpenAI(api_key=self.api_key)
                logger.info("OpenAI client initialized", model=self.model)
            else:
                logger.warning("OpenAI API key not configured. Reasoning calls will fail over to fallbacks.")

    @property
    def configured(self) -> bool:
        return self.client is not None

    def _track_usage(self, response) -> int:
        tokens = 0
        if getattr(response, "usage", None):
            tokens = response.usage.total_tokens or 0
            self.total_tokens_used += tokens
        self.request_count += 1
        return tokens

    def get_usage_stats(self) -> dict:
        return {
            "total_tokens": self.total_tokens_used,
            "request_count": self.request_count,
            "avg_tokens_per_request": (
                self.total_tokens_used / self.request_count
                if self.request_count > 0 else 0
            )
        }

    async def complete(
        self,
        system_instruction: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Return the model's text for one system/user exchange or raise ReasoningError."""
        if not self.client:
            raise ReasoningError("OpenAI API key not configured")

        start = time.perf_counter()
        try:
            response = await self._call_with_retry(
                messages=[
                    {"role": "system", "content": system_instruction},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=self.timeout,
            )
        except Exception as e:
            metrics.increment("reasoning.errors")
            raise ReasoningError(f"Reasoning call failed: {e}") from e

        tokens = self._track_usage(response)
        log_reasoning_call("complete", tokens, (time.perf_counter() - start) * 1000)

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise ReasoningError("Response had no message content") from e
        if not content or not content.strip():
            raise ReasoningError("Empty response")
        return content

    async def _call_with_retry(self, **kwargs):
        """
        Make OpenAI API call with retry logic for rate limits.

        Implements exponential backoff for:
        - 429 Rate Limit errors
        - 500/502/503 Server errors
        - Network timeouts
        """
        last_exception = None
        delay = self.INITIAL_DELAY

        for attempt in range(self.MAX_RETRIES + 1):
            try:
                return await self.client.chat.completions.create(
                    model=self.model,
                    **kwargs
                )

            except Exception as e:
                last_exception = e
                error_str = str(e).lower()

                is_rate_limit = "rate_limit" in error_str or "429" in error_str
                is_server_error = any(code in error_str for code in ["500", "502", "503"])
                is_timeout = "timeout" in error_str or "timed out" in error_str

                if is_rate_limit or is_server_error or is_timeout:
                    if attempt < self.MAX_RETRIES:
                        wait_time = delay * (2 if is_rate_limit else 1)
                        logger.warning(
                            "Reasoning API error, retrying",
                            wait_seconds=f"{wait_time:.1f}",
                            attempt=f"{attempt + 1}/{self.MAX_RETRIES + 1}",
                        )
                        await asyncio.sleep(wait_time)
                        delay = min(delay * 2, self.MAX_DELAY)
                        continue

                # Non-retryable error or max retries reached
                raise last_exception

        raise last_exception

    async def check_connection(self) -> bool:
        """Check if the OpenAI API is reachable."""
        if not self.client:
            return False
        try:
            await self.client.models.list()
            return True
        except Exception:
            return False
