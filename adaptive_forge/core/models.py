"""
Request and result types for the generation pipeline.

All types are immutable once built.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from .errors import ErrorKind
from .routing import ModelTier, ReasoningEffort


@dataclass(frozen=True)
class Citation:
    """A web source backing the search context."""
    url: str
    title: str


@dataclass(frozen=True)
class SearchContext:
    """Web research attached to a request before generation."""
    answer: str
    citations: Tuple[Citation, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "citations", tuple(self.citations))


@dataclass(frozen=True)
class GenerationRequest:
    """One user turn: request text plus optional context."""
    text: str
    file_context: Tuple[str, ...] = field(default_factory=tuple)
    prior_artifacts: Tuple[str, ...] = field(default_factory=tuple)  # most recent last
    search_context: Optional[SearchContext] = None

    def __post_init__(self):
        """Validate the request carries text and freeze sequences."""
        if not self.text or not self.text.strip():
            raise ValueError("text is required and cannot be empty")
        object.__setattr__(self, "file_context", tuple(self.file_context))
        object.__setattr__(self, "prior_artifacts", tuple(self.prior_artifacts))

    @property
    def latest_artifact(self) -> Optional[str]:
        return self.prior_artifacts[-1] if self.prior_artifacts else None


@dataclass(frozen=True)
class GenerationAttemptResult:
    """Outcome of one completion call against one tier."""
    tier_used: ModelTier
    reasoning_effort: Optional[ReasoningEffort]
    tokens_in: int
    tokens_out: int
    elapsed_ms: int
    raw_text: Optional[str] = None
    artifact: Optional[str] = None
    retryable: bool = False
    error_kind: Optional[ErrorKind] = None

    @property
    def succeeded(self) -> bool:
        return self.error_kind is None and self.artifact is not None

    @property
    def tokens_used(self) -> int:
        return self.tokens_in + self.tokens_out


@dataclass(frozen=True)
class ValidationOutcome:
    """Verdict of the external validator."""
    is_valid: bool
    feedback: Optional[str] = None


@dataclass(frozen=True)
class GenerationMetadata:
    """Accounting attached to every generation result."""
    tier_used: Optional[ModelTier]
    tokens_used: int
    elapsed_ms: int
    validation_passed: bool
    iterations: int
    fallback_occurred: bool
    estimated_cost: float
    reasoning_effort: Optional[ReasoningEffort] = None
    validation_errors: Optional[Tuple[str, ...]] = None
    validation_warnings: Optional[Tuple[str, ...]] = None
    original_tier_attempted: Optional[ModelTier] = None


@dataclass(frozen=True)
class GenerationResult:
    """Result returned to the caller of the pipeline.

    A failure without an artifact means no output was produced (service or
    configuration failure). A failure with an artifact means output was
    produced but never validated within the iteration budget.
    """
    success: bool
    metadata: GenerationMetadata
    artifact: Optional[str] = None
    error: Optional[str] = None

    @property
    def produced_artifact(self) -> bool:
        return self.artifact is not None
