"""
OpenAI structured generation client.

Uses the AsyncOpenAI client with a JSON-schema response format and validates
the returned payload against the requested pydantic model.
"""

from __future__ import annotations

import time
from typing import Any

from openai import APIError, APITimeoutError, AsyncOpenAI
from openai import RateLimitError as OpenAIRateLimitError
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from rp.exceptions import GenerationError
from rp.llm.base import GenerationResult, M
from rp.logging import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a research analyst assistant. Answer strictly with JSON that "
    "matches the provided schema. Preserve every geographic reference, "
    "timeframe, and named factor from the request exactly as written."
)


class RateLimitError(GenerationError):
    """Rate limit exceeded."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, context={"capability": "generation", "reason": "rate_limited"})
        self.retry_after = retry_after


class OpenAIStructuredGenerator:
    """Structured generator backed by the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        timeout: float = 60.0,
        temperature: float = 0.2,
    ) -> None:
        """Initialize the OpenAI client.

        Args:
            api_key: OpenAI API key. If None, uses OPENAI_API_KEY env var.
            model: Model name used for every call.
            base_url: Optional OpenAI-compatible endpoint.
            timeout: Per-request timeout in seconds.
            temperature: Sampling temperature.
        """
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        self._model = model
        self._temperature = temperature

    @property
    def available(self) -> bool:
        return True

    @property
    def model(self) -> str:
        return self._model

    def _response_format(self, schema: type[M]) -> dict[str, Any]:
        return {
            "type": "json_schema",
            "json_schema": {
                "name": schema.__name__,
                "schema": schema.model_json_schema(),
                "strict": False,
            },
        }

    @retry(
        retry=retry_if_exception_type(RateLimitError),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        stop=stop_after_attempt(4),
        reraise=True,
    )
    async def _complete(self, prompt: str, schema: type[M]) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=self._temperature,
                response_format=self._response_format(schema),  # type: ignore[arg-type]
            )
        except OpenAIRateLimitError as e:
            raise RateLimitError(str(e)) from e

        choice = response.choices[0] if response.choices else None
        content = choice.message.content if choice and choice.message else None
        if not content:
            raise GenerationError(
                "Empty generation response",
                context={"capability": "generation", "reason": "empty_response"},
            )
        return content

    async def generate(self, prompt: str, schema: type[M]) -> GenerationResult[M]:
        """Generate a value matching `schema`.

        Args:
            prompt: Prompt text.
            schema: Pydantic model the output must validate against.

        Returns:
            GenerationResult with the validated model, or the failure.
        """
        start_time = time.monotonic()
        try:
            content = await self._complete(prompt, schema)
            value = schema.model_validate_json(content)
        except GenerationError as e:
            logger.warning("Generation failed", schema=schema.__name__, error=str(e))
            return GenerationResult.failure(e)
        except ValidationError as e:
            logger.warning("Generation returned an invalid payload", schema=schema.__name__)
            return GenerationResult.failure(
                GenerationError(
                    "Generated payload does not match schema",
                    context={"capability": "generation", "reason": "invalid_payload", "errors": e.error_count()},
                )
            )
        except APITimeoutError as e:
            return GenerationResult.failure(
                GenerationError(str(e), context={"capability": "generation", "reason": "timeout"})
            )
        except APIError as e:
            logger.warning("OpenAI API error", schema=schema.__name__, error=str(e))
            return GenerationResult.failure(
                GenerationError(str(e), context={"capability": "generation", "reason": "api_error"})
            )

        latency_ms = int((time.monotonic() - start_time) * 1000)
        logger.debug("Generation complete", schema=schema.__name__, latency_ms=latency_ms)
        return GenerationResult.success(value, model=self._model, latency_ms=latency_ms)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.close()
