"""
In-memory usage ledger.

Keeps the most recent usage records for aggregate accounting. State lives
for the lifetime of the process only.
"""

import threading
from collections import Counter, deque
from typing import List, Optional

import structlog

from .models import UsageRecord, UsageStats

log = structlog.get_logger(__name__)

DEFAULT_CAPACITY = 1000


class UsageTracker:
    """Bounded, append-only log of usage records.

    When the log is full the oldest record is evicted first. A lock guards
    every read and write so concurrent requests never lose an update or
    corrupt the eviction order.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        """Initialize the tracker.

        Args:
            capacity: Maximum number of records kept in memory

        Raises:
            ValueError: If capacity is not positive
        """
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self._records = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def log(self, record: UsageRecord) -> None:
        """Append a record, evicting the oldest one when at capacity."""
        with self._lock:
            self._records.append(record)

        log.info(
            "usage.recorded",
            tier=record.tier.value,
            reasoning_effort=record.reasoning_effort.value if record.reasoning_effort else None,
            tokens_used=record.tokens_used,
            elapsed_ms=record.elapsed_ms,
            estimated_cost=round(record.estimated_cost, 6),
            fallback_occurred=record.fallback_occurred,
            success=record.success,
        )

    def stats(self) -> Optional[UsageStats]:
        """Aggregate statistics, or None when no records are held."""
        with self._lock:
            records = list(self._records)

        total = len(records)
        if total == 0:
            return None

        successful = sum(1 for r in records if r.success)
        with_fallback = sum(1 for r in records if r.fallback_occurred)
        total_cost = sum(r.estimated_cost for r in records)

        tier_counts = Counter(r.tier.value for r in records)
        effort_counts = Counter(
            r.reasoning_effort.value for r in records if r.reasoning_effort is not None
        )

        return UsageStats(
            total_requests=total,
            success_rate=successful / total,
            fallback_rate=with_fallback / total,
            total_cost=total_cost,
            avg_cost_per_request=total_cost / total,
            avg_tokens=sum(r.tokens_used for r in records) / total,
            avg_elapsed_ms=sum(r.elapsed_ms for r in records) / total,
            tier_distribution=dict(tier_counts),
            reasoning_distribution=dict(effort_counts),
        )

    def recent(self, count: int = 10) -> List[UsageRecord]:
        """Most recent records, oldest first."""
        if count <= 0:
            return []
        with self._lock:
            return list(self._records)[-count:]

    def clear(self) -> None:
        """Drop every record. Used for testing."""
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def format_usage_report(stats: Optional[UsageStats]) -> List[str]:
    """Render usage statistics as report lines."""
    if stats is None:
        return ["No usage data available"]

    lines = [
        f"Total Requests: {stats.total_requests}",
        f"Success Rate: {stats.success_rate * 100:.2f}%",
        f"Fallback Rate: {stats.fallback_rate * 100:.2f}%",
        f"Total Cost: ${stats.total_cost:.4f}",
        f"Avg Cost/Request: ${stats.avg_cost_per_request:.4f}",
        f"Avg Tokens: {round(stats.avg_tokens)}",
        f"Avg Time: {round(stats.avg_elapsed_ms)}ms",
        "Tier Distribution:",
    ]
    for tier, count in stats.tier_distribution.items():
        lines.append(f"  {tier}: {count} ({count / stats.total_requests * 100:.1f}%)")

    if stats.reasoning_distribution:
        lines.append("Reasoning Effort Distribution:")
        for effort, count in stats.reasoning_distribution.items():
            lines.append(f"  {effort}: {count} ({count / stats.total_requests * 100:.1f}%)")

    return lines


# Global tracker instance
_default_tracker: Optional[UsageTracker] = None
_default_tracker_lock = threading.Lock()


def get_usage_tracker(capacity: int = DEFAULT_CAPACITY) -> UsageTracker:
    """Get the process-wide usage tracker.

    Args:
        capacity: Capacity used only when the tracker is first created

    Returns:
        The shared UsageTracker instance
    """
    global _default_tracker
    with _default_tracker_lock:
        if _default_tracker is None:
            _default_tracker = UsageTracker(capacity)
        return _default_tracker
