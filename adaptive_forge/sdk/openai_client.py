"""
OpenAI completion service adapter.

Maps OpenAI SDK exceptions onto ErrorKind once, so nothing downstream ever
inspects raw SDK errors.
"""

import os
from typing import Dict, List, Optional

import openai
import structlog
from openai import AsyncOpenAI

from ..core.errors import ConfigurationError, ErrorKind, ServiceError, service_error_for
from ..core.generation import CompletionResponse
from ..core.routing import ModelTier, ReasoningEffort

log = structlog.get_logger(__name__)


def classify_openai_error(exc: Exception) -> ServiceError:
    """Map an OpenAI SDK exception to a typed service error.

    Args:
        exc: Exception raised by the SDK

    Returns:
        TransientServiceError or NonRetryableServiceError
    """
    if isinstance(exc, openai.APITimeoutError):
        return service_error_for(f"OpenAI request timed out: {exc}", ErrorKind.TIMEOUT)

    if isinstance(exc, openai.APIConnectionError):
        return service_error_for(f"OpenAI connection failed: {exc}", ErrorKind.SERVICE_UNAVAILABLE)

    if isinstance(exc, openai.RateLimitError):
        return service_error_for(f"OpenAI rate limit: {exc}", ErrorKind.RATE_LIMITED, exc.status_code)

    if isinstance(exc, openai.NotFoundError) and getattr(exc, "code", None) == "model_not_found":
        return service_error_for(f"OpenAI model unavailable: {exc}", ErrorKind.MODEL_UNAVAILABLE, exc.status_code)

    if isinstance(exc, openai.APIStatusError):
        return service_error_for(
            f"OpenAI request failed with status {exc.status_code}: {exc}",
            ErrorKind.from_status(exc.status_code),
            exc.status_code,
        )

    return service_error_for(f"OpenAI request failed: {exc}", ErrorKind.UNKNOWN)


class OpenAICompletionService:
    """Completion service backed by the OpenAI chat completions API.

    Reasoning tiers receive reasoning_effort and keep their default
    temperature; other tiers receive the selected temperature.
    """

    def __init__(self, api_key: Optional[str] = None, client: Optional[AsyncOpenAI] = None):
        """Initialize the adapter.

        Args:
            api_key: API key; read from OPENAI_API_KEY when omitted
            client: Pre-built client, mainly for tests

        Raises:
            ConfigurationError: If no API key is available
        """
        if client is not None:
            self.client = client
            return

        api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not api_key or not api_key.strip():
            raise ConfigurationError("OpenAI API key not configured (set OPENAI_API_KEY)")

        self.client = AsyncOpenAI(api_key=api_key)

    async def call(
        self,
        tier: ModelTier,
        messages: List[Dict[str, str]],
        temperature: float,
        max_output_tokens: int,
        reasoning_effort: Optional[ReasoningEffort] = None,
    ) -> CompletionResponse:
        """Create one chat completion.

        Raises:
            TransientServiceError: On timeouts, connection loss, 429 and 5xx
            NonRetryableServiceError: On any other API failure
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        params = {
            "model": tier.value,
            "messages": messages,
            "max_completion_tokens": max_output_tokens,
        }
        if tier.supports_reasoning_effort:
            if reasoning_effort is not None:
                params["reasoning_effort"] = reasoning_effort.value
        else:
            params["temperature"] = temperature

        try:
            response = await self.client.chat.completions.create(**params)
        except openai.OpenAIError as exc:
            error = classify_openai_error(exc)
            log.warning("openai.call_failed", tier=tier.value, kind=error.kind.value, status_code=error.status_code)
            raise error from exc

        content = response.choices[0].message.content if response.choices else None
        usage = response.usage

        return CompletionResponse(
            text=content or "",
            tokens_in=usage.prompt_tokens if usage else 0,
            tokens_out=usage.completion_tokens if usage else 0,
        )
