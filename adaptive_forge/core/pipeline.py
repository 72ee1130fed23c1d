"""
Top-level generation entry point.

Wires the feedback loop, the shared trackers and the optional search
augmentation into a single generate() call.
"""

import threading
from typing import Optional

import structlog

from .feedback_loop import FeedbackLoopController, Validator
from .generation import CompletionService, GenerationClient
from .guardrails import BudgetTracker, GuardrailConfig, RateLimiter
from .models import GenerationRequest, GenerationResult
from .routing import ModelSelection, select_model_for_request
from .search import SearchAugmenter, SearchProvider
from adaptive_forge.config.loader import PipelineConfig
from adaptive_forge.storage.repository import UsageTracker, get_usage_tracker
from adaptive_forge.telemetry.logging import new_request_id

log = structlog.get_logger(__name__)


class GenerationPipeline:
    """Generates artifacts for requests, sharing trackers across calls.

    Construct once per process and call generate() from any number of
    concurrent tasks.
    """

    def __init__(
        self,
        config: PipelineConfig,
        service: CompletionService,
        usage_tracker: Optional[UsageTracker] = None,
        rate_limiter: Optional[RateLimiter] = None,
        budget_tracker: Optional[BudgetTracker] = None,
        search_provider: Optional[SearchProvider] = None,
    ):
        """Initialize the pipeline.

        Args:
            config: Loaded pipeline configuration
            service: Completion service adapter
            usage_tracker: Shared usage ledger; the process-wide one by default
            rate_limiter: Shared request limiter; the process-wide one by default
            budget_tracker: Shared daily budget; the process-wide one by default
            search_provider: Enables search augmentation when given
        """
        self.config = config
        # An empty UsageTracker is falsy
        self.usage_tracker = usage_tracker if usage_tracker is not None else get_usage_tracker(
            config.limits.usage_log_capacity
        )
        self.rate_limiter = rate_limiter if rate_limiter is not None else get_rate_limiter(
            config.limits.requests_per_minute
        )
        self.budget_tracker = budget_tracker if budget_tracker is not None else get_budget_tracker(
            config.limits.daily_budget_usd
        )

        self.client = GenerationClient(service, timeout_seconds=config.generation.request_timeout_seconds)

        guard = config.limits.guard_generation
        self.controller = FeedbackLoopController(
            client=self.client,
            model_config=config.model,
            usage_tracker=self.usage_tracker,
            shape_contract=config.shape,
            rate_limiter=self.rate_limiter if guard else None,
            budget_tracker=self.budget_tracker if guard else None,
            guardrail_config=GuardrailConfig(max_cost_per_request=config.generation.max_cost_per_request),
            validator_timeout_seconds=config.generation.validator_timeout_seconds,
        )

        self.search = None
        if search_provider is not None:
            self.search = SearchAugmenter(
                search_provider,
                rate_limiter=self.rate_limiter,
                budget_tracker=self.budget_tracker,
            )

    def select(self, request: GenerationRequest) -> ModelSelection:
        """Model selection the pipeline would use for this request."""
        return select_model_for_request(request.text, self.config.model)

    async def generate(
        self,
        request: GenerationRequest,
        max_iterations: Optional[int] = None,
        validator: Optional[Validator] = None,
        use_search: bool = False,
        force_search: bool = False,
    ) -> GenerationResult:
        """Generate an artifact for one request.

        Args:
            request: The user request
            max_iterations: Iteration ceiling; the configured value by default
            validator: Optional async validator
            use_search: Attach web research when the request needs it
            force_search: Attach web research regardless of search triggers

        Returns:
            GenerationResult, never raising for service or validation failures
        """
        if max_iterations is None:
            max_iterations = self.config.generation.max_iterations

        with structlog.contextvars.bound_contextvars(request_id=new_request_id()):
            if (use_search or force_search) and self.search is not None:
                request = await self.search.augment(request, force=force_search)
            elif use_search or force_search:
                log.warning("pipeline.search_unavailable")

            return await self.controller.run(request, max_iterations, validator, selection=self.select(request))


# Global tracker instances
_default_rate_limiter: Optional[RateLimiter] = None
_default_budget_tracker: Optional[BudgetTracker] = None
_defaults_lock = threading.Lock()


def get_rate_limiter(max_requests_per_minute: int = 60) -> RateLimiter:
    """Get the process-wide rate limiter, creating it on first use."""
    global _default_rate_limiter
    with _defaults_lock:
        if _default_rate_limiter is None:
            _default_rate_limiter = RateLimiter(max_requests_per_minute)
        return _default_rate_limiter


def get_budget_tracker(daily_budget_usd: float = 10.0) -> BudgetTracker:
    """Get the process-wide budget tracker, creating it on first use."""
    global _default_budget_tracker
    with _defaults_lock:
        if _default_budget_tracker is None:
            _default_budget_tracker = BudgetTracker(daily_budget_usd)
        return _default_budget_tracker
