"""
Pricing calculations and rate management.

Handles cost computations for every completion model tier.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict

from .errors import ConfigurationError
from .routing import ModelTier
from .token_counter import TokenUsage


TOKENS_PER_PRICE_UNIT = Decimal("1000000")


@dataclass(frozen=True)
class TierPricing:
    """Per-token pricing for a specific tier."""
    input_cost_per_1m: Decimal  # Cost per 1M input tokens
    output_cost_per_1m: Decimal  # Cost per 1M output tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported tiers."""
    prices: Dict[ModelTier, TierPricing]

    def get_pricing(self, tier: ModelTier) -> TierPricing:
        """Get pricing for a specific tier.

        Args:
            tier: Model tier

        Returns:
            TierPricing for the tier

        Raises:
            ConfigurationError: If the tier has no price row
        """
        if tier not in self.prices:
            name = tier.value if isinstance(tier, ModelTier) else tier
            raise ConfigurationError(f"No pricing configured for tier: {name}")
        return self.prices[tier]


# Fixed pricing table - no dynamic fetching, no defaults
PRICING_TABLE = PricingTable({
    ModelTier.GPT_5: TierPricing(
        input_cost_per_1m=Decimal("1.25"),
        output_cost_per_1m=Decimal("10.00")
    ),
    ModelTier.GPT_5_MINI: TierPricing(
        input_cost_per_1m=Decimal("0.25"),
        output_cost_per_1m=Decimal("2.00")
    ),
    ModelTier.GPT_5_NANO: TierPricing(
        input_cost_per_1m=Decimal("0.05"),
        output_cost_per_1m=Decimal("0.40")
    ),
    ModelTier.O3: TierPricing(
        input_cost_per_1m=Decimal("5.00"),
        output_cost_per_1m=Decimal("20.00")
    ),
    ModelTier.O3_MINI: TierPricing(
        input_cost_per_1m=Decimal("1.00"),
        output_cost_per_1m=Decimal("5.00")
    ),
    ModelTier.GPT_4O: TierPricing(
        input_cost_per_1m=Decimal("2.50"),
        output_cost_per_1m=Decimal("10.00")
    ),
})


def estimate_cost(
    tier: ModelTier,
    tokens_in: int,
    tokens_out: int,
    table: PricingTable = PRICING_TABLE,
) -> float:
    """Estimate USD cost of one call.

    Unlike invoice-style rounding, the exact value is returned so that
    per-attempt costs add up without drift.

    Args:
        tier: Tier that served the call
        tokens_in: Input tokens reported by the service
        tokens_out: Output tokens reported by the service
        table: Pricing table to use

    Returns:
        Cost in USD

    Raises:
        ConfigurationError: If the tier has no price row
        ValueError: If a token count is negative
    """
    usage = TokenUsage(input_tokens=tokens_in, output_tokens=tokens_out)
    pricing = table.get_pricing(tier)

    input_cost = (Decimal(usage.input_tokens) / TOKENS_PER_PRICE_UNIT) * pricing.input_cost_per_1m
    output_cost = (Decimal(usage.output_tokens) / TOKENS_PER_PRICE_UNIT) * pricing.output_cost_per_1m

    return float(input_cost + output_cost)


def get_tier_pricing(tier: ModelTier, table: PricingTable = PRICING_TABLE) -> TierPricing:
    """Pricing row for display purposes."""
    return table.get_pricing(tier)
