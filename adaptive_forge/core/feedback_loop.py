"""
Generate, validate, improve.

The controller drives one request through the fallback chain for every
completion call and, when a validator is supplied, through a bounded
improvement loop fed by the validator's feedback.

States:
    Initial -> Attempting -> (Validating <-> Improving) -> Success | Failure

Failure shapes:
    artifact is None  - no output produced (service, guardrail or exhausted chain)
    artifact present  - output produced but never passed the self-check or validator
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Tuple

import structlog

from .errors import ExhaustedFallbackError, ServiceError
from .extraction import DIAGRAM_SHAPE_CONTRACT, ShapeCheckResult, ShapeContract, check_artifact_shape
from .generation import GenerationClient, Messages, failed_attempt
from .guardrails import (
    BudgetTracker,
    GuardrailConfig,
    GuardrailViolation,
    RateLimiter,
    enforce_guardrails,
    record_guarded_call,
)
from .models import (
    GenerationAttemptResult,
    GenerationMetadata,
    GenerationRequest,
    GenerationResult,
    ValidationOutcome,
)
from .pricing import PRICING_TABLE, PricingTable, estimate_cost
from .prompts import DIAGRAM_SYSTEM_PROMPT, build_generation_messages, build_improvement_messages
from .routing import ModelConfig, ModelSelection, ModelTier, ReasoningEffort, next_fallback, select_model_for_request
from .token_counter import estimate_message_tokens
from adaptive_forge.storage.models import UsageRecord
from adaptive_forge.storage.repository import UsageTracker

log = structlog.get_logger(__name__)

Validator = Callable[[str, str], Awaitable[ValidationOutcome]]

DEFAULT_VALIDATOR_TIMEOUT_SECONDS = 60.0
DEFAULT_FEEDBACK = "The diagram did not pass validation. Review it against the request and fix any problems."


class _ValidatorCrashed(Exception):
    """The validator raised instead of returning an outcome."""

    def __init__(self, cause: Exception):
        super().__init__(f"Validator failed: {cause}")
        self.cause = cause


@dataclass
class _LoopState:
    """Mutable accounting for one run. Never shared between requests."""
    primary: ModelTier
    last_tier: Optional[ModelTier] = None
    last_effort: Optional[ReasoningEffort] = None
    tokens_used: int = 0
    estimated_cost: float = 0.0
    fallback_occurred: bool = False


class FeedbackLoopController:
    """Runs the generation state machine for one request at a time.

    The controller itself holds no per-request state, so a single instance
    may serve concurrent requests; the shared trackers synchronize
    themselves.
    """

    def __init__(
        self,
        client: GenerationClient,
        model_config: ModelConfig,
        usage_tracker: UsageTracker,
        shape_contract: ShapeContract = DIAGRAM_SHAPE_CONTRACT,
        pricing_table: PricingTable = PRICING_TABLE,
        rate_limiter: Optional[RateLimiter] = None,
        budget_tracker: Optional[BudgetTracker] = None,
        guardrail_config: Optional[GuardrailConfig] = None,
        validator_timeout_seconds: float = DEFAULT_VALIDATOR_TIMEOUT_SECONDS,
        system_prompt: str = DIAGRAM_SYSTEM_PROMPT,
    ):
        if validator_timeout_seconds <= 0:
            raise ValueError("validator_timeout_seconds must be > 0")
        self.client = client
        self.model_config = model_config
        self.usage_tracker = usage_tracker
        self.shape_contract = shape_contract
        self.pricing_table = pricing_table
        self.rate_limiter = rate_limiter
        self.budget_tracker = budget_tracker
        self.guardrail_config = guardrail_config
        self.validator_timeout_seconds = validator_timeout_seconds
        self.system_prompt = system_prompt

    async def run(
        self,
        request: GenerationRequest,
        max_iterations: int,
        validator: Optional[Validator] = None,
        selection: Optional[ModelSelection] = None,
    ) -> GenerationResult:
        """Generate an artifact and, with a validator, improve it until it passes.

        Args:
            request: The user request with its optional context
            max_iterations: Ceiling on completion attempts that produce an
                artifact, initial generation included. Zero means the
                validator is never called.
            validator: Optional async callable (artifact, request text) -> ValidationOutcome
            selection: Pre-computed model selection; derived from the
                request text when omitted

        Returns:
            GenerationResult describing the terminal state

        Raises:
            ValueError: If max_iterations is negative
            ConfigurationError: If a tier has no price row
        """
        if max_iterations < 0:
            raise ValueError("max_iterations cannot be negative")

        if selection is None:
            selection = select_model_for_request(request.text, self.model_config)

        state = _LoopState(primary=selection.tier)
        started = time.perf_counter()

        log.info(
            "feedback_loop.started",
            tier=selection.tier.value,
            max_iterations=max_iterations,
            has_validator=validator is not None,
        )

        messages = build_generation_messages(request, self.system_prompt)
        try:
            attempt = await self._traverse(messages, selection, state)
        except (ExhaustedFallbackError, ServiceError, GuardrailViolation) as exc:
            return self._no_artifact(state, started, iterations=0, error=exc)

        iterations = 1
        artifact = attempt.artifact
        shape = check_artifact_shape(artifact, self.shape_contract)

        if not shape.is_valid:
            log.warning("feedback_loop.self_check_failed", errors=list(shape.errors))
            return self._result(
                state,
                started,
                success=False,
                artifact=artifact,
                iterations=iterations,
                validation_passed=False,
                shape=shape,
                error="Generated artifact failed the structural self-check: " + "; ".join(shape.errors),
                validation_errors=shape.errors,
            )

        if validator is None:
            return self._result(
                state, started, success=True, artifact=artifact,
                iterations=iterations, validation_passed=False, shape=shape,
            )

        if max_iterations == 0:
            return self._result(
                state,
                started,
                success=False,
                artifact=artifact,
                iterations=iterations,
                validation_passed=False,
                shape=shape,
                error="Validation skipped: max_iterations is 0",
            )

        try:
            outcome = await self._validate(validator, artifact, request.text)

            while not outcome.is_valid and iterations < max_iterations:
                feedback = outcome.feedback or DEFAULT_FEEDBACK
                messages = build_improvement_messages(
                    request.text,
                    artifact,
                    feedback,
                    system_prompt=self.system_prompt,
                    artifact_language=self.client.artifact_language,
                )
                try:
                    attempt = await self._traverse(messages, selection, state)
                except (ExhaustedFallbackError, ServiceError, GuardrailViolation) as exc:
                    return self._no_artifact(state, started, iterations=iterations, error=exc)

                iterations += 1
                artifact = attempt.artifact
                log.info(
                    "feedback_loop.iteration_completed",
                    iteration=iterations,
                    tier=attempt.tier_used.value,
                    tokens_used=state.tokens_used,
                )
                outcome = await self._validate(validator, artifact, request.text)
        except _ValidatorCrashed as exc:
            # The last artifact and the usage spent on it are kept
            return self._result(
                state,
                started,
                success=False,
                artifact=artifact,
                iterations=iterations,
                validation_passed=False,
                shape=check_artifact_shape(artifact, self.shape_contract),
                error=str(exc),
                validation_errors=(str(exc),),
            )

        shape = check_artifact_shape(artifact, self.shape_contract)

        if outcome.is_valid:
            log.info("feedback_loop.validation_passed", iterations=iterations)
            return self._result(
                state, started, success=True, artifact=artifact,
                iterations=iterations, validation_passed=True, shape=shape,
            )

        feedback = outcome.feedback or DEFAULT_FEEDBACK
        log.warning("feedback_loop.iterations_exhausted", iterations=iterations, feedback=feedback)
        return self._result(
            state,
            started,
            success=False,
            artifact=artifact,
            iterations=iterations,
            validation_passed=False,
            shape=shape,
            error=feedback,
            validation_errors=(feedback,),
        )

    async def _traverse(
        self,
        messages: Messages,
        selection: ModelSelection,
        state: _LoopState,
    ) -> GenerationAttemptResult:
        """Walk the fallback chain from the selected tier until one attempt succeeds."""
        tier = selection.tier
        attempted: List[ModelTier] = []

        while True:
            current = selection if tier == selection.tier else selection.for_tier(
                tier, self.model_config.reasoning_effort
            )
            self._check_guardrails(messages, current)

            attempted.append(tier)
            state.last_tier = tier
            state.last_effort = current.reasoning_effort
            if tier != state.primary:
                state.fallback_occurred = True

            started = time.perf_counter()
            try:
                attempt = await self.client.attempt(messages, current)
            except ServiceError as exc:
                elapsed_ms = int((time.perf_counter() - started) * 1000)
                self._account(failed_attempt(current, exc, elapsed_ms), state, cost=0.0, success=False)

                if not exc.retryable:
                    log.error("fallback.fatal_error", tier=tier.value, kind=exc.kind.value, error=str(exc))
                    raise

                following = next_fallback(self.model_config, tier)
                log.warning(
                    "fallback.tier_failed",
                    tier=tier.value,
                    kind=exc.kind.value,
                    next_tier=following.value if following else None,
                )
                if following is None:
                    raise ExhaustedFallbackError(
                        "All fallback tiers exhausted ("
                        + " -> ".join(t.value for t in attempted)
                        + f"): {exc}",
                        attempted,
                        exc,
                    ) from exc
                tier = following
                continue

            cost = estimate_cost(tier, attempt.tokens_in, attempt.tokens_out, self.pricing_table)
            self._account(attempt, state, cost=cost, success=True)
            return attempt

    def _check_guardrails(self, messages: Messages, selection: ModelSelection) -> None:
        has_ceiling = self.guardrail_config is not None and self.guardrail_config.max_cost_per_request is not None
        if self.rate_limiter is None and self.budget_tracker is None and not has_ceiling:
            return
        projected = estimate_cost(
            selection.tier,
            estimate_message_tokens(messages),
            selection.max_output_tokens,
            self.pricing_table,
        )
        enforce_guardrails(
            f"completion:{selection.tier.value}",
            self.rate_limiter,
            self.budget_tracker,
            projected,
            self.guardrail_config,
        )

    def _account(
        self,
        attempt: GenerationAttemptResult,
        state: _LoopState,
        cost: float,
        success: bool,
    ) -> None:
        state.tokens_used += attempt.tokens_used
        state.estimated_cost += cost

        record_guarded_call(self.rate_limiter, self.budget_tracker, cost)
        self.usage_tracker.log(UsageRecord(
            timestamp=datetime.now(timezone.utc),
            tier=attempt.tier_used,
            tokens_used=attempt.tokens_used,
            elapsed_ms=attempt.elapsed_ms,
            fallback_occurred=attempt.tier_used != state.primary,
            success=success,
            estimated_cost=cost,
            reasoning_effort=attempt.reasoning_effort,
        ))

    async def _validate(self, validator: Validator, artifact: str, original_request: str) -> ValidationOutcome:
        try:
            outcome = await asyncio.wait_for(
                validator(artifact, original_request),
                timeout=self.validator_timeout_seconds,
            )
        except asyncio.TimeoutError:
            log.warning("feedback_loop.validator_timeout", timeout_seconds=self.validator_timeout_seconds)
            return ValidationOutcome(
                is_valid=False,
                feedback=(
                    f"Validation timed out after {self.validator_timeout_seconds:g}s. "
                    "Regenerate the diagram, keeping it complete and well-formed."
                ),
            )
        except Exception as exc:
            log.error("feedback_loop.validator_failed", error=str(exc), exc_info=True)
            raise _ValidatorCrashed(exc) from exc

        log.debug("feedback_loop.validated", is_valid=outcome.is_valid)
        return outcome

    def _no_artifact(self, state: _LoopState, started: float, iterations: int, error: Exception) -> GenerationResult:
        log.error("feedback_loop.failed", error=str(error), tier=state.last_tier.value if state.last_tier else None)
        return self._result(
            state,
            started,
            success=False,
            artifact=None,
            iterations=iterations,
            validation_passed=False,
            shape=None,
            error=str(error),
        )

    def _result(
        self,
        state: _LoopState,
        started: float,
        success: bool,
        artifact: Optional[str],
        iterations: int,
        validation_passed: bool,
        shape: Optional[ShapeCheckResult],
        error: Optional[str] = None,
        validation_errors: Optional[Tuple[str, ...]] = None,
    ) -> GenerationResult:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        metadata = GenerationMetadata(
            tier_used=state.last_tier,
            reasoning_effort=state.last_effort,
            tokens_used=state.tokens_used,
            elapsed_ms=elapsed_ms,
            validation_passed=validation_passed,
            iterations=iterations,
            fallback_occurred=state.fallback_occurred,
            estimated_cost=state.estimated_cost,
            validation_errors=validation_errors,
            validation_warnings=shape.warnings if shape is not None and shape.warnings else None,
            original_tier_attempted=state.primary if state.fallback_occurred else None,
        )

        log.info(
            "feedback_loop.completed",
            success=success,
            iterations=iterations,
            tier=state.last_tier.value if state.last_tier else None,
            tokens_used=state.tokens_used,
            estimated_cost=round(state.estimated_cost, 6),
            fallback_occurred=state.fallback_occurred,
        )
        return GenerationResult(success=success, metadata=metadata, artifact=artifact, error=error)
