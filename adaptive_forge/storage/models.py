"""
Data models for storage layer.

Defines the usage ledger entries and their aggregates.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from adaptive_forge.core.routing import ModelTier, ReasoningEffort


@dataclass(frozen=True)
class UsageRecord:
    """Immutable record of one completion attempt.

    Append-only entries that form the in-process ledger of model usage.
    Once logged, these records must never be modified.
    """
    timestamp: datetime
    tier: ModelTier
    tokens_used: int
    elapsed_ms: int
    fallback_occurred: bool
    success: bool
    estimated_cost: float
    reasoning_effort: Optional[ReasoningEffort] = None


@dataclass(frozen=True)
class UsageStats:
    """Aggregates over the records currently held in the ledger."""
    total_requests: int
    success_rate: float  # 0.0-1.0
    fallback_rate: float  # 0.0-1.0
    total_cost: float
    avg_cost_per_request: float
    avg_tokens: float
    avg_elapsed_ms: float
    tier_distribution: Dict[str, int]
    reasoning_distribution: Dict[str, int]
