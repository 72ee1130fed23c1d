"""
Model tier routing.

Maps a request's complexity onto a concrete model selection and walks the
fallback chain when a tier fails with a retryable error.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from functools import total_ordering
from typing import Optional, Tuple

import structlog

from .complexity import Complexity, classify_complexity
from .errors import ConfigurationError

log = structlog.get_logger(__name__)


@total_ordering
class ModelTier(Enum):
    """Completion model tiers, ordered by capability."""
    GPT_5_NANO = "gpt-5-nano"
    GPT_5_MINI = "gpt-5-mini"
    GPT_4O = "gpt-4o"
    O3_MINI = "o3-mini"
    GPT_5 = "gpt-5"
    O3 = "o3"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    @property
    def supports_reasoning_effort(self) -> bool:
        """Only the gpt-5 and o3 families accept a reasoning effort."""
        return self.value.startswith("gpt-5") or self.value.startswith("o3")

    def __lt__(self, other):
        if not isinstance(other, ModelTier):
            return NotImplemented
        return self.rank < other.rank


_TIER_ORDER = [
    ModelTier.GPT_5_NANO,
    ModelTier.GPT_5_MINI,
    ModelTier.GPT_4O,
    ModelTier.O3_MINI,
    ModelTier.GPT_5,
    ModelTier.O3,
]


@total_ordering
class ReasoningEffort(Enum):
    """How much internal deliberation a reasoning tier performs."""
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _EFFORT_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, ReasoningEffort):
            return NotImplemented
        return self.rank < other.rank


_EFFORT_ORDER = [
    ReasoningEffort.MINIMAL,
    ReasoningEffort.LOW,
    ReasoningEffort.MEDIUM,
    ReasoningEffort.HIGH,
]

# Adjustments applied when the primary tier supports reasoning effort
SIMPLE_TOKEN_FACTOR = 0.75
SIMPLE_COST_MULTIPLIER = 0.7
COMPLEX_TOKEN_FACTOR = 1.6
COMPLEX_COST_MULTIPLIER = 1.3
COMPLEX_TEMPERATURE_DROP = 0.2


@dataclass(frozen=True)
class ModelConfig:
    """Static routing configuration for one deployment."""
    primary: ModelTier
    fallback_chain: Tuple[ModelTier, ...] = field(default_factory=tuple)
    reasoning_effort: ReasoningEffort = ReasoningEffort.MEDIUM
    temperature: float = 0.7
    max_tokens: int = 16000

    def __post_init__(self):
        """Validate the chain never revisits a tier."""
        object.__setattr__(self, "fallback_chain", tuple(self.fallback_chain))
        tiers = (self.primary,) + self.fallback_chain
        if len(set(tiers)) != len(tiers):
            raise ConfigurationError(
                f"Fallback chain repeats a tier: {[t.value for t in tiers]}"
            )
        if not 0.0 <= self.temperature <= 2.0:
            raise ConfigurationError("temperature must be between 0.0 and 2.0")
        if self.max_tokens <= 0:
            raise ConfigurationError("max_tokens must be > 0")


@dataclass(frozen=True)
class ModelSelection:
    """Concrete parameters for one completion call."""
    tier: ModelTier
    reasoning_effort: Optional[ReasoningEffort]
    temperature: float
    max_output_tokens: int
    cost_multiplier: float = 1.0

    def __post_init__(self):
        """Reasoning effort is set if and only if the tier supports it."""
        if self.tier.supports_reasoning_effort and self.reasoning_effort is None:
            raise ValueError(f"{self.tier.value} requires a reasoning effort")
        if not self.tier.supports_reasoning_effort and self.reasoning_effort is not None:
            raise ValueError(f"{self.tier.value} does not support reasoning effort")

    def for_tier(self, tier: ModelTier, default_effort: ReasoningEffort) -> "ModelSelection":
        """Carry these parameters over to a fallback tier."""
        if tier.supports_reasoning_effort:
            effort = self.reasoning_effort or default_effort
        else:
            effort = None
        return replace(self, tier=tier, reasoning_effort=effort)


def select_model(complexity: Complexity, config: ModelConfig) -> ModelSelection:
    """Select model parameters for a request of the given complexity.

    Rules, first match wins:
    1. Reasoning-capable primary, simple request: minimal effort, fewer tokens
    2. Reasoning-capable primary, complex request: high effort, lower
       temperature, more tokens
    3. Otherwise the configured defaults

    Args:
        complexity: Classified request complexity
        config: Routing configuration

    Returns:
        ModelSelection for the primary tier
    """
    primary = config.primary

    if primary.supports_reasoning_effort and complexity == Complexity.SIMPLE:
        selection = ModelSelection(
            tier=primary,
            reasoning_effort=ReasoningEffort.MINIMAL,
            temperature=config.temperature,
            max_output_tokens=int(config.max_tokens * SIMPLE_TOKEN_FACTOR),
            cost_multiplier=SIMPLE_COST_MULTIPLIER,
        )
    elif primary.supports_reasoning_effort and complexity == Complexity.COMPLEX:
        selection = ModelSelection(
            tier=primary,
            reasoning_effort=ReasoningEffort.HIGH,
            temperature=max(0.0, round(config.temperature - COMPLEX_TEMPERATURE_DROP, 4)),
            max_output_tokens=int(config.max_tokens * COMPLEX_TOKEN_FACTOR),
            cost_multiplier=COMPLEX_COST_MULTIPLIER,
        )
    else:
        selection = ModelSelection(
            tier=primary,
            reasoning_effort=config.reasoning_effort if primary.supports_reasoning_effort else None,
            temperature=config.temperature,
            max_output_tokens=config.max_tokens,
            cost_multiplier=1.0,
        )

    log.debug(
        "routing.model_selected",
        complexity=complexity.value,
        tier=selection.tier.value,
        reasoning_effort=selection.reasoning_effort.value if selection.reasoning_effort else None,
        max_output_tokens=selection.max_output_tokens,
        cost_multiplier=selection.cost_multiplier,
    )
    return selection


def select_model_for_request(text: str, config: ModelConfig) -> ModelSelection:
    """Classify the request text and select model parameters for it."""
    return select_model(classify_complexity(text), config)


def next_fallback(config: ModelConfig, attempted_tier: ModelTier) -> Optional[ModelTier]:
    """Tier to try after attempted_tier failed, or None when the chain is spent.

    The caller stops when None is returned; this function never wraps around.
    """
    if attempted_tier == config.primary:
        return config.fallback_chain[0] if config.fallback_chain else None

    try:
        index = config.fallback_chain.index(attempted_tier)
    except ValueError:
        return None

    if index + 1 < len(config.fallback_chain):
        return config.fallback_chain[index + 1]
    return None
