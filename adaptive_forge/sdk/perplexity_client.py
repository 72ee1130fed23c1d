"""
Perplexity search provider.

Perplexity exposes an OpenAI-compatible chat completions endpoint, so the
OpenAI SDK is reused with a different base URL.
"""

import asyncio
import os
import re
from typing import List, Optional, Sequence
from urllib.parse import urlparse

import openai
import structlog
from openai import AsyncOpenAI

from ..core.errors import ConfigurationError
from ..core.models import Citation
from ..core.search import SearchModel, SearchResponse
from .openai_client import classify_openai_error

log = structlog.get_logger(__name__)

PERPLEXITY_BASE_URL = "https://api.perplexity.ai"
DEFAULT_MAX_TOKENS = 1000
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_RETRIES = 1
DEFAULT_RETRY_BACKOFF_SECONDS = 1.0

_FILE_EXTENSION = re.compile(r"\.[^/.]+$")


def title_from_url(url: str) -> str:
    """Best-effort readable title derived from a URL path."""
    parsed = urlparse(url)
    if not parsed.netloc:
        return url

    path = _FILE_EXTENSION.sub("", parsed.path.strip("/"))
    parts = [p for p in re.split(r"[/-]", path) if p]
    if parts:
        return " ".join(p[:1].upper() + p[1:] for p in parts)

    return parsed.netloc.replace("www.", "", 1)


def parse_citations(urls: Sequence[str]) -> List[Citation]:
    return [Citation(url=url, title=title_from_url(url)) for url in urls]


class PerplexitySearchProvider:
    """Web search via the Perplexity API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: SearchModel = SearchModel.SONAR,
        client: Optional[AsyncOpenAI] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
    ):
        """Initialize the provider.

        Args:
            api_key: API key; read from PERPLEXITY_API_KEY when omitted
            model: Search model used when a call names none
            client: Pre-built client, mainly for tests
            max_retries: Extra attempts after a retryable failure
            retry_backoff_seconds: Base delay, doubled on each retry

        Raises:
            ConfigurationError: If no API key is available
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must be >= 0")

        self.model = model
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        if client is not None:
            self.client = client
            return

        api_key = api_key or os.environ.get("PERPLEXITY_API_KEY")
        if not api_key or not api_key.strip():
            raise ConfigurationError("Perplexity API key not configured (set PERPLEXITY_API_KEY)")

        self.client = AsyncOpenAI(api_key=api_key, base_url=PERPLEXITY_BASE_URL)

    async def search(self, query: str, model: Optional[SearchModel] = None) -> SearchResponse:
        """Run one search query.

        Retryable failures (rate limits, timeouts, server errors) are retried
        with exponential backoff up to max_retries times.

        Args:
            query: Search query
            model: Search model for this call; the provider default when omitted

        Raises:
            ServiceError: Classified API failure
        """
        model = model or self.model
        attempt = 0
        while True:
            try:
                response = await self.client.chat.completions.create(
                    model=model.value,
                    messages=[{"role": "user", "content": query}],
                    max_tokens=DEFAULT_MAX_TOKENS,
                    temperature=DEFAULT_TEMPERATURE,
                    extra_body={"return_citations": True, "return_related_questions": False},
                )
                break
            except openai.OpenAIError as exc:
                error = classify_openai_error(exc)
                if not error.retryable or attempt >= self.max_retries:
                    log.warning(
                        "perplexity.search_failed",
                        kind=error.kind.value,
                        status_code=error.status_code,
                        attempts=attempt + 1,
                    )
                    raise error from exc

                delay = self.retry_backoff_seconds * 2 ** attempt
                log.info("perplexity.retrying", kind=error.kind.value, attempt=attempt + 1, delay_seconds=delay)
                await asyncio.sleep(delay)
                attempt += 1

        answer = response.choices[0].message.content if response.choices else None
        usage = response.usage

        return SearchResponse(
            answer=answer or "",
            citations=tuple(parse_citations(getattr(response, "citations", None) or [])),
            model=model,
            tokens_in=usage.prompt_tokens if usage else 0,
            tokens_out=usage.completion_tokens if usage else 0,
        )
