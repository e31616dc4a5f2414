"""LiteLLM wrapper for model-agnostic completion calls.

Every tier in the catalog is reached through LiteLLM, either directly or via a
LiteLLM proxy (``LITELLM_BASE_URL``), so the router never speaks a vendor wire
format itself.

This module:
- Wraps litellm.acompletion()
- Retries transient failures with exponential backoff via tenacity
- Normalizes errors to LLMError subclasses
- Logs token usage for cost accounting
"""

from __future__ import annotations

from typing import Any

import litellm
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from cascade_router.config import Settings, get_settings

log = structlog.get_logger(__name__)


class LLMError(Exception):
    """Base exception for all LLM call failures."""


class LLMRateLimitError(LLMError):
    """Upstream LLM rate limit exceeded."""


class LLMUnavailableError(LLMError):
    """LLM service is unavailable."""


class LLMTimeoutError(LLMError):
    """Upstream call timed out."""


# Transient failures worth retrying
_RETRYABLE = (LLMRateLimitError, LLMUnavailableError, LLMTimeoutError)


class LLMClient:
    """Thin wrapper around LiteLLM with retry logic and structured logging."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        retry_wait: wait_base | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)
        # Route through the proxy when one is configured, else LiteLLM reads vendor keys from env
        self._transport: dict[str, Any] = {}
        if self._settings.litellm_base_url:
            self._transport = {
                "api_base": self._settings.litellm_base_url,
                "api_key": self._settings.litellm_api_key.get_secret_value(),
            }

    async def complete(
        self,
        *,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int,
        temperature: float = 0.7,
        **kwargs: Any,
    ) -> litellm.ModelResponse:
        """Send a chat completion request via LiteLLM.

        Args:
            messages: List of role/content dicts (OpenAI format)
            model: LiteLLM model identifier (e.g. "anthropic/claude-haiku-4-5")
            max_tokens: Maximum output tokens
            temperature: Sampling temperature (0.0 = deterministic)
            **kwargs: Additional kwargs passed to litellm.acompletion()

        Returns:
            LiteLLM ModelResponse object

        Raises:
            LLMRateLimitError: Upstream rate limit after retries
            LLMUnavailableError: Service unavailable after retries
            LLMTimeoutError: Upstream timeout after retries
            LLMError: Any other LLM failure
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(_RETRYABLE),
            stop=stop_after_attempt(self._settings.litellm_max_retries + 1),
            wait=self._retry_wait,
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    log.warning(
                        "llm.completion_retry",
                        model=model,
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await self._complete_once(
                    messages=messages,
                    model=model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    **kwargs,
                )
        raise LLMError("LLM completion failed: retry loop exited without a result")

    async def _complete_once(
        self,
        *,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int,
        temperature: float,
        **kwargs: Any,
    ) -> litellm.ModelResponse:
        log.debug(
            "llm.completion_request",
            model=model,
            message_count=len(messages),
            max_tokens=max_tokens,
        )

        try:
            response: litellm.ModelResponse = await litellm.acompletion(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **self._transport,
                timeout=self._settings.litellm_timeout_seconds,
                **kwargs,
            )
        except litellm.exceptions.RateLimitError as exc:
            raise LLMRateLimitError(f"Rate limit from upstream LLM: {exc}") from exc
        except litellm.exceptions.ServiceUnavailableError as exc:
            raise LLMUnavailableError(f"LLM service unavailable: {exc}") from exc
        except (litellm.exceptions.Timeout, TimeoutError) as exc:
            raise LLMTimeoutError(f"LLM call timed out: {exc}") from exc
        except ConnectionError as exc:
            raise LLMUnavailableError(f"LLM connection failed: {exc}") from exc
        except Exception as exc:
            raise LLMError(f"LLM completion failed: {exc}") from exc

        usage = getattr(response, "usage", None)
        if usage:
            log.info(
                "llm.completion_done",
                model=model,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
            )

        return response

    def extract_text(self, response: litellm.ModelResponse) -> str:
        """Extract the assistant text content from a completion response."""
        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError, KeyError):
            return ""

    def extract_finish_reason(self, response: litellm.ModelResponse) -> str:
        try:
            return response.choices[0].finish_reason or "stop"
        except (AttributeError, IndexError, KeyError):
            return "stop"

    def extract_usage(self, response: litellm.ModelResponse) -> tuple[int, int, int]:
        """Return (prompt tokens, completion tokens, cached prompt tokens)."""
        usage = getattr(response, "usage", None)
        if not usage:
            return 0, 0, 0
        details = getattr(usage, "prompt_tokens_details", None)
        cached = getattr(details, "cached_tokens", None) or 0
        return usage.prompt_tokens or 0, usage.completion_tokens or 0, cached
