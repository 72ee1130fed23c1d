"""
Web search augmentation.

Decides whether a request needs fresh web data, turns it into a search
query, and attaches the provider's answer to the request as search context.
Search calls go through the same rate and spend guardrails as completion
calls; any failure leaves the request without search context.
"""

import asyncio
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol, Tuple

import structlog

from .complexity import analyze_complexity
from .guardrails import (
    BudgetTracker,
    GuardrailViolation,
    RateLimiter,
    enforce_guardrails,
    record_guarded_call,
)
from .models import Citation, GenerationRequest, SearchContext
from .token_counter import estimate_tokens

log = structlog.get_logger(__name__)

EXPLICIT_PREFIXES = ("search:", "look up:", "find:", "research:", "get data on:")

TEMPORAL_KEYWORDS = (
    "current",
    "latest",
    "recent",
    "today",
    "this year",
    "this month",
    "this week",
    "2025",
    "2024",
    "now",
    "up-to-date",
    "real-time",
)

DATA_KEYWORDS = (
    "market cap",
    "market capitalization",
    "stock price",
    "statistics",
    "data on",
    "numbers for",
    "top 5",
    "top 10",
    "best",
    "fastest",
    "largest",
    "ranking",
    "comparison",
)

TEMPORAL_WEIGHT = 0.4
DATA_WEIGHT = 0.3
QUESTION_CONTEXT_WEIGHT = 0.2
MIN_CONFIDENCE = 0.7
MAX_QUERY_CHARS = 200

DEFAULT_SEARCH_TIMEOUT_SECONDS = 10.0

# Search model thresholds on the query complexity score
PRO_MODEL_MIN_SCORE = 0.6
REASONING_MODEL_MIN_SCORE = 0.4
REASONING_WORDS = ("why", "how", "explain", "reason", "cause")
TYPICAL_SEARCH_OUTPUT_TOKENS = 500

_QUESTION_WORD = re.compile(r"\b(what|which|who|how many)\b", re.IGNORECASE)
_DATA_CONTEXT = re.compile(r"\b(company|companies|country|countries|people|person)\b", re.IGNORECASE)
_PREFIX = re.compile(r"^(search|look up|find|research|get data on):\s*", re.IGNORECASE)
_DIAGRAM_INSTRUCTIONS = (
    re.compile(r"create\s+(a\s+)?(bar\s+chart|pie\s+chart|line\s+chart|graph|diagram|flowchart|table)", re.IGNORECASE),
    re.compile(r"generate\s+(a\s+)?", re.IGNORECASE),
    re.compile(r"make\s+(a\s+)?", re.IGNORECASE),
    re.compile(r"design\s+(a\s+)?", re.IGNORECASE),
    re.compile(r"show(ing)?\s+(me\s+)?", re.IGNORECASE),
    re.compile(r"display(ing)?\s+", re.IGNORECASE),
    re.compile(r"visualize\s+", re.IGNORECASE),
    re.compile(r"illustrate\s+", re.IGNORECASE),
)
_STOP_WORDS = re.compile(r"\b(the|a|an|of|for|with|using|by|in|on|at)\b", re.IGNORECASE)
_YEAR = re.compile(r"\b(202[0-9]|203[0-9])\b")
_NOW_WORDS = re.compile(r"\b(current|latest|now|today)\b", re.IGNORECASE)
_THIS_PERIOD = re.compile(r"\bthis\s+(year|month)\b", re.IGNORECASE)


class SearchModel(Enum):
    """Search models offered by the provider."""
    SONAR = "sonar"
    SONAR_PRO = "sonar-pro"
    SONAR_REASONING = "sonar-reasoning"


# USD per 1M tokens (input, output)
SEARCH_TOKEN_PRICES = {
    SearchModel.SONAR: (Decimal("1"), Decimal("1")),
    SearchModel.SONAR_PRO: (Decimal("3"), Decimal("15")),
    SearchModel.SONAR_REASONING: (Decimal("1"), Decimal("5")),
}

SEARCH_REQUEST_FEES = {
    SearchModel.SONAR: Decimal("0.005"),
    SearchModel.SONAR_PRO: Decimal("0.006"),
    SearchModel.SONAR_REASONING: Decimal("0.006"),
}


@dataclass(frozen=True)
class QueryAnalysis:
    """Whether a request needs web search, and why."""
    needs_search: bool
    search_query: str
    reasoning: str
    triggers: Tuple[str, ...]
    confidence: float


@dataclass(frozen=True)
class SearchResponse:
    """Answer returned by a search provider."""
    answer: str
    citations: Tuple[Citation, ...] = field(default_factory=tuple)
    model: SearchModel = SearchModel.SONAR
    tokens_in: int = 0
    tokens_out: int = 0

    def __post_init__(self):
        object.__setattr__(self, "citations", tuple(self.citations))


@dataclass(frozen=True)
class SearchModelSelection:
    """Search model chosen for a query, with its projected cost."""
    model: SearchModel
    reasoning: str
    estimated_cost_usd: float
    complexity_score: float


class SearchProvider(Protocol):
    """External web search service."""

    async def search(self, query: str, model: Optional[SearchModel] = None) -> SearchResponse:
        ...


def extract_temporal_context(text: str, today: Optional[datetime] = None) -> Optional[str]:
    """Year the request refers to, explicitly or through words like "latest"."""
    match = _YEAR.search(text)
    if match:
        return match.group(1)

    if _NOW_WORDS.search(text) or _THIS_PERIOD.search(text):
        today = today or datetime.now(timezone.utc)
        return str(today.year)

    return None


def build_search_query(text: str, today: Optional[datetime] = None) -> str:
    """Turn a diagram request into a compact web search query.

    Strips any explicit search prefix, diagram instructions and stop words,
    appends the implied year, and caps the result at 200 characters.
    """
    query = _PREFIX.sub("", text)

    for pattern in _DIAGRAM_INSTRUCTIONS:
        query = pattern.sub("", query)

    query = _STOP_WORDS.sub(" ", query)
    query = " ".join(query.split())

    temporal = extract_temporal_context(text, today)
    if temporal and temporal not in query:
        query = f"{query} {temporal}"

    if len(query) > MAX_QUERY_CHARS:
        query = query[:MAX_QUERY_CHARS - 3] + "..."

    return query


def analyze_search_need(text: str, min_confidence: float = MIN_CONFIDENCE) -> QueryAnalysis:
    """Score how strongly a request asks for fresh web data.

    Args:
        text: The request text
        min_confidence: Score at or above which search is activated

    Returns:
        QueryAnalysis with the decision, triggers and confidence
    """
    lowered = text.lower()
    triggers = []
    confidence = 0.0

    for prefix in EXPLICIT_PREFIXES:
        if lowered.startswith(prefix):
            triggers.append(f"explicit:{prefix}")
            confidence = 1.0
            break

    temporal = [k for k in TEMPORAL_KEYWORDS if k in lowered]
    if temporal:
        triggers.extend(f"temporal:{k}" for k in temporal)
        confidence += TEMPORAL_WEIGHT

    data = [k for k in DATA_KEYWORDS if k in lowered]
    if data:
        triggers.extend(f"data:{k}" for k in data)
        confidence += DATA_WEIGHT

    if _QUESTION_WORD.search(text) and _DATA_CONTEXT.search(text):
        triggers.append("question+context")
        confidence += QUESTION_CONTEXT_WEIGHT

    # Round away float noise so 0.4 + 0.3 meets a 0.7 threshold
    confidence = round(min(confidence, 1.0), 6)
    needs_search = confidence >= min_confidence

    if needs_search:
        reasoning = f"Detected {len(triggers)} trigger(s) with {confidence * 100:.0f}% confidence"
    else:
        reasoning = f"No strong search triggers detected ({confidence * 100:.0f}% confidence)"

    return QueryAnalysis(
        needs_search=needs_search,
        search_query=build_search_query(text) if needs_search else "",
        reasoning=reasoning,
        triggers=tuple(triggers),
        confidence=confidence,
    )


def calculate_search_cost(model: SearchModel, tokens_in: int, tokens_out: int) -> float:
    """USD cost of one search: token cost plus the per-request fee."""
    if tokens_in < 0 or tokens_out < 0:
        raise ValueError("token counts cannot be negative")
    input_price, output_price = SEARCH_TOKEN_PRICES[model]
    million = Decimal("1000000")
    token_cost = Decimal(tokens_in) * input_price / million + Decimal(tokens_out) * output_price / million
    return float(token_cost + SEARCH_REQUEST_FEES[model])


def estimate_search_cost(model: SearchModel, query: str) -> float:
    """Projected cost of searching for query with a typical answer length."""
    return calculate_search_cost(model, estimate_tokens(query), TYPICAL_SEARCH_OUTPUT_TOKENS)


def select_search_model(query: str) -> SearchModelSelection:
    """Pick the cheapest search model that fits the query.

    Rules, first match wins:
    1. Complexity score above 0.6: sonar-pro
    2. Score above 0.4 and the query asks why or how: sonar-reasoning
    3. Otherwise sonar
    """
    analysis = analyze_complexity(query)
    lowered = query.lower()
    percent = f"{analysis.score * 100:.0f}%"

    if analysis.score > PRO_MODEL_MIN_SCORE:
        model = SearchModel.SONAR_PRO
        reasoning = f"High complexity query ({percent}): {', '.join(analysis.indicators)}"
    elif analysis.score > REASONING_MODEL_MIN_SCORE and any(word in lowered for word in REASONING_WORDS):
        model = SearchModel.SONAR_REASONING
        reasoning = f"Medium complexity with reasoning needs ({percent}): {', '.join(analysis.indicators)}"
    else:
        model = SearchModel.SONAR
        reasoning = f"Simple query ({percent}): standard search sufficient"

    return SearchModelSelection(
        model=model,
        reasoning=reasoning,
        estimated_cost_usd=estimate_search_cost(model, query),
        complexity_score=analysis.score,
    )


class SearchAugmenter:
    """Attaches web research to requests that need it.

    The search model is picked per query unless one is fixed, and the
    guardrails are checked against that model's projected cost.
    """

    def __init__(
        self,
        provider: SearchProvider,
        rate_limiter: Optional[RateLimiter] = None,
        budget_tracker: Optional[BudgetTracker] = None,
        model: Optional[SearchModel] = None,
        projected_cost_usd: Optional[float] = None,
        timeout_seconds: float = DEFAULT_SEARCH_TIMEOUT_SECONDS,
        min_confidence: float = MIN_CONFIDENCE,
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.provider = provider
        self.rate_limiter = rate_limiter
        self.budget_tracker = budget_tracker
        self.model = model
        self.projected_cost_usd = projected_cost_usd
        self.timeout_seconds = timeout_seconds
        self.min_confidence = min_confidence

    def _select(self, query: str) -> Tuple[SearchModel, float]:
        if self.model is None:
            selection = select_search_model(query)
            log.debug("search.model_selected", model=selection.model.value, reasoning=selection.reasoning)
            model, projected = selection.model, selection.estimated_cost_usd
        else:
            model, projected = self.model, estimate_search_cost(self.model, query)
        if self.projected_cost_usd is not None:
            projected = self.projected_cost_usd
        return model, projected

    async def augment(self, request: GenerationRequest, force: bool = False) -> GenerationRequest:
        """Return the request with search context attached when search applies.

        Args:
            request: The incoming request
            force: Search even when the request shows no search triggers

        Returns:
            A new request carrying search context, or the original request
            when search is not needed, not allowed, or fails
        """
        if request.search_context is not None:
            return request

        analysis = analyze_search_need(request.text, self.min_confidence)
        if not analysis.needs_search and not force:
            log.debug("search.skipped", reasoning=analysis.reasoning)
            return request

        query = analysis.search_query or build_search_query(request.text)
        if not query:
            return request

        model, projected_cost = self._select(query)

        try:
            enforce_guardrails("search", self.rate_limiter, self.budget_tracker, projected_cost)
        except GuardrailViolation as exc:
            log.warning("search.blocked", action=exc.action.name, reason=str(exc))
            return request

        try:
            response = await asyncio.wait_for(self.provider.search(query, model), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            record_guarded_call(self.rate_limiter, self.budget_tracker, 0.0)
            log.warning("search.timeout", query=query, timeout_seconds=self.timeout_seconds)
            return request
        except Exception as exc:
            # Search is best effort; generation continues without context
            record_guarded_call(self.rate_limiter, self.budget_tracker, 0.0)
            log.warning("search.failed", query=query, error=str(exc), exc_info=True)
            return request

        cost = calculate_search_cost(response.model, response.tokens_in, response.tokens_out)
        record_guarded_call(self.rate_limiter, self.budget_tracker, cost)

        if not response.answer.strip():
            log.info("search.empty_answer", query=query)
            return request

        log.info(
            "search.completed",
            query=query,
            citations=len(response.citations),
            estimated_cost=round(cost, 6),
        )
        return replace(
            request,
            search_context=SearchContext(answer=response.answer, citations=response.citations),
        )
