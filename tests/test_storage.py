"""
Unit tests for the in-memory usage ledger.

Tests FIFO eviction, aggregate statistics and the report formatter.
"""

import threading
from datetime import datetime, timezone

import pytest

from adaptive_forge.core.routing import ModelTier, ReasoningEffort
from adaptive_forge.storage.models import UsageRecord
from adaptive_forge.storage.repository import UsageTracker, format_usage_report, get_usage_tracker


def make_record(
    tier=ModelTier.GPT_5,
    tokens=1000,
    elapsed_ms=200,
    fallback=False,
    success=True,
    cost=0.01,
    effort=ReasoningEffort.MEDIUM,
):
    return UsageRecord(
        timestamp=datetime(2026, 3, 1, tzinfo=timezone.utc),
        tier=tier,
        tokens_used=tokens,
        elapsed_ms=elapsed_ms,
        fallback_occurred=fallback,
        success=success,
        estimated_cost=cost,
        reasoning_effort=effort,
    )


class TestUsageTracker:
    """Test the bounded ledger."""

    def test_empty_tracker_has_no_stats(self):
        """stats() is None before any record is logged."""
        assert UsageTracker().stats() is None

    def test_capacity_never_exceeded(self):
        """The ledger evicts once full."""
        tracker = UsageTracker(capacity=3)
        for i in range(10):
            tracker.log(make_record(tokens=i))
        assert len(tracker) == 3

    def test_eviction_is_fifo(self):
        """The oldest records go first."""
        tracker = UsageTracker(capacity=3)
        for i in range(5):
            tracker.log(make_record(tokens=i))
        assert [r.tokens_used for r in tracker.recent(10)] == [2, 3, 4]

    def test_recent(self):
        """recent(n) returns the newest n records, oldest first."""
        tracker = UsageTracker()
        for i in range(5):
            tracker.log(make_record(tokens=i))
        assert [r.tokens_used for r in tracker.recent(2)] == [3, 4]
        assert tracker.recent(0) == []

    def test_clear(self):
        """clear() drops every record."""
        tracker = UsageTracker()
        tracker.log(make_record())
        tracker.clear()
        assert len(tracker) == 0

    def test_invalid_capacity(self):
        """Capacity must be positive."""
        with pytest.raises(ValueError):
            UsageTracker(capacity=0)

    def test_stats(self):
        """Aggregates cover rates, averages and distributions."""
        tracker = UsageTracker()
        tracker.log(make_record(tier=ModelTier.GPT_5, tokens=1000, elapsed_ms=100, cost=0.02))
        tracker.log(make_record(tier=ModelTier.O3_MINI, tokens=3000, elapsed_ms=300, fallback=True, cost=0.04))
        tracker.log(make_record(
            tier=ModelTier.GPT_4O, tokens=0, elapsed_ms=200, fallback=True, success=False, cost=0.0, effort=None,
        ))
        tracker.log(make_record(tier=ModelTier.GPT_5, tokens=2000, elapsed_ms=400, cost=0.02,
                                effort=ReasoningEffort.HIGH))

        stats = tracker.stats()

        assert stats.total_requests == 4
        assert stats.success_rate == 0.75
        assert stats.fallback_rate == 0.5
        assert stats.total_cost == pytest.approx(0.08)
        assert stats.avg_cost_per_request == pytest.approx(0.02)
        assert stats.avg_tokens == 1500
        assert stats.avg_elapsed_ms == 250
        assert stats.tier_distribution == {"gpt-5": 2, "o3-mini": 1, "gpt-4o": 1}
        assert stats.reasoning_distribution == {"medium": 2, "high": 1}

    def test_concurrent_logging(self):
        """Concurrent writers never lose records or overflow capacity."""
        tracker = UsageTracker(capacity=500)

        def worker():
            for _ in range(200):
                tracker.log(make_record())

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(tracker) == 500
        assert tracker.stats().total_requests == 500

    def test_records_are_immutable(self):
        """Logged records cannot be changed."""
        record = make_record()
        with pytest.raises(AttributeError):
            record.tokens_used = 5


class TestUsageReport:
    """Test the text report."""

    def test_empty_report(self):
        """No stats, one line."""
        assert format_usage_report(None) == ["No usage data available"]

    def test_report_lines(self):
        """The report lists totals and distributions."""
        tracker = UsageTracker()
        tracker.log(make_record(tier=ModelTier.GPT_5, cost=0.5))
        tracker.log(make_record(tier=ModelTier.GPT_4O, cost=0.25, effort=None, fallback=True))

        lines = format_usage_report(tracker.stats())

        assert "Total Requests: 2" in lines
        assert "Success Rate: 100.00%" in lines
        assert "Fallback Rate: 50.00%" in lines
        assert "Total Cost: $0.7500" in lines
        assert "  gpt-5: 1 (50.0%)" in lines
        assert "  medium: 1 (50.0%)" in lines


class TestGetUsageTracker:
    """Test the process-wide instance."""

    def test_returns_same_instance(self):
        """Repeated calls share one tracker."""
        assert get_usage_tracker() is get_usage_tracker()
