"""
Single completion call against one tier.

Wraps the injected completion service with a timeout, classifies failures
and extracts the artifact from the raw completion.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

import structlog

from .errors import (
    ErrorKind,
    NonRetryableServiceError,
    ServiceError,
    TransientServiceError,
)
from .extraction import extract_artifact
from .models import GenerationAttemptResult
from .routing import ModelSelection, ModelTier, ReasoningEffort

log = structlog.get_logger(__name__)

Messages = List[Dict[str, str]]

DEFAULT_TIMEOUT_SECONDS = 120.0


@dataclass(frozen=True)
class CompletionResponse:
    """Raw completion returned by a completion service."""
    text: str
    tokens_in: int = 0
    tokens_out: int = 0


class CompletionService(Protocol):
    """External completion service.

    Implementations raise ServiceError subclasses for every failure they
    can classify.
    """

    async def call(
        self,
        tier: ModelTier,
        messages: Messages,
        temperature: float,
        max_output_tokens: int,
        reasoning_effort: Optional[ReasoningEffort] = None,
    ) -> CompletionResponse:
        ...


class GenerationClient:
    """Issues one completion call per attempt.

    Never touches shared state; usage accounting happens in the caller once
    the cost of the attempt is known.
    """

    def __init__(
        self,
        service: CompletionService,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        artifact_language: str = "html",
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.service = service
        self.timeout_seconds = timeout_seconds
        self.artifact_language = artifact_language

    async def attempt(self, messages: Messages, selection: ModelSelection) -> GenerationAttemptResult:
        """Run one completion call for the selected tier.

        Args:
            messages: Chat messages for the call
            selection: Tier and parameters to use

        Returns:
            GenerationAttemptResult with the extracted artifact

        Raises:
            TransientServiceError: Retryable failure, including timeout
            NonRetryableServiceError: Any other failure
        """
        effort = selection.reasoning_effort if selection.tier.supports_reasoning_effort else None
        start = time.perf_counter()

        try:
            response = await asyncio.wait_for(
                self.service.call(
                    selection.tier,
                    messages,
                    temperature=selection.temperature,
                    max_output_tokens=selection.max_output_tokens,
                    reasoning_effort=effort,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise TransientServiceError(
                f"{selection.tier.value} timed out after {self.timeout_seconds:g}s",
                ErrorKind.TIMEOUT,
            ) from exc
        except ServiceError:
            raise
        except Exception as exc:
            raise NonRetryableServiceError(
                f"{selection.tier.value} failed: {exc}",
                ErrorKind.UNKNOWN,
            ) from exc

        elapsed_ms = int((time.perf_counter() - start) * 1000)

        if not response.text or not response.text.strip():
            raise NonRetryableServiceError(
                f"{selection.tier.value} returned an empty completion",
                ErrorKind.EMPTY_RESPONSE,
            )

        artifact = extract_artifact(response.text, self.artifact_language)
        log.debug(
            "generation.attempt_completed",
            tier=selection.tier.value,
            tokens_in=response.tokens_in,
            tokens_out=response.tokens_out,
            elapsed_ms=elapsed_ms,
        )

        return GenerationAttemptResult(
            tier_used=selection.tier,
            reasoning_effort=effort,
            tokens_in=response.tokens_in,
            tokens_out=response.tokens_out,
            elapsed_ms=elapsed_ms,
            raw_text=response.text,
            artifact=artifact,
            retryable=False,
        )


def failed_attempt(selection: ModelSelection, error: ServiceError, elapsed_ms: int) -> GenerationAttemptResult:
    """Describe an attempt that ended in a classified failure."""
    return GenerationAttemptResult(
        tier_used=selection.tier,
        reasoning_effort=selection.reasoning_effort,
        tokens_in=0,
        tokens_out=0,
        elapsed_ms=elapsed_ms,
        retryable=error.retryable,
        error_kind=error.kind,
    )
