"""
Request-rate and spend guardrails.

Implements the sliding-window request throttle and the UTC-day spend cap
consulted before any paid external call.

Enforcement Order:
1. Request rate - Sliding 60 second window
2. Daily budget - Projected spend must fit under the cap
3. Per-request max cost - Prevents catastrophic single-call costs
"""

import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum, auto
from typing import Callable, List, Optional

import structlog

log = structlog.get_logger(__name__)

WINDOW_MS = 60_000
DEFAULT_MAX_REQUESTS_PER_MINUTE = 60
DEFAULT_DAILY_BUDGET_USD = 10.0


class EnforcementAction(Enum):
    """Available enforcement actions in order of severity."""
    ALLOW = auto()     # Allow the call (no action)
    THROTTLE = auto()  # Rate window full; retry after the window slides
    BLOCK = auto()     # Reject the call entirely


class GuardrailViolation(Exception):
    """Raised when a guardrail is enforced with BLOCK or THROTTLE action."""
    def __init__(self, message: str, action: EnforcementAction, retry_after_ms: int = 0):
        super().__init__(message)
        self.action = action
        self.retry_after_ms = retry_after_ms


def _now_ms() -> float:
    return time.time() * 1000


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class RateLimiter:
    """Sliding-window request counter.

    The limiter only reports; callers check can_proceed() and call record()
    once the request has actually been issued.
    """

    def __init__(
        self,
        max_requests_per_minute: int = DEFAULT_MAX_REQUESTS_PER_MINUTE,
        clock: Callable[[], float] = _now_ms,
    ):
        """Initialize the limiter.

        Args:
            max_requests_per_minute: Ceiling within the trailing 60 seconds
            clock: Returns the current time in milliseconds
        """
        if max_requests_per_minute <= 0:
            raise ValueError("max_requests_per_minute must be > 0")
        self.max_requests_per_minute = max_requests_per_minute
        self._clock = clock
        self._requests: List[float] = []
        self._lock = threading.Lock()

    def _trim(self, now: float) -> None:
        cutoff = now - WINDOW_MS
        self._requests = [ts for ts in self._requests if ts > cutoff]

    def can_proceed(self) -> bool:
        """True when another request fits in the current window."""
        with self._lock:
            self._trim(self._clock())
            return len(self._requests) < self.max_requests_per_minute

    def record(self) -> None:
        """Record a request issued now."""
        with self._lock:
            now = self._clock()
            self._trim(now)
            self._requests.append(now)

    def remaining(self) -> int:
        """Requests still available in the current window."""
        with self._lock:
            self._trim(self._clock())
            return max(0, self.max_requests_per_minute - len(self._requests))

    def time_until_reset_ms(self) -> int:
        """Milliseconds until the oldest tracked request leaves the window."""
        with self._lock:
            if not self._requests:
                return 0
            now = self._clock()
            return max(0, int(min(self._requests) + WINDOW_MS - now))

    def reset(self) -> None:
        """Forget every tracked request. Used for testing."""
        with self._lock:
            self._requests = []

    def stats(self) -> dict:
        with self._lock:
            self._trim(self._clock())
            in_window = len(self._requests)
        return {
            "requests_in_window": in_window,
            "remaining_requests": max(0, self.max_requests_per_minute - in_window),
            "max_requests": self.max_requests_per_minute,
            "time_until_reset_ms": self.time_until_reset_ms(),
        }


class BudgetTracker:
    """Daily spend cap that resets at midnight UTC.

    Every operation first checks whether the UTC date has changed since the
    last reset and, if so, zeroes the spend. The tracker never blocks on its
    own; callers check can_spend() before recording.
    """

    def __init__(
        self,
        daily_budget_usd: float = DEFAULT_DAILY_BUDGET_USD,
        today: Callable[[], date] = _utc_today,
    ):
        """Initialize the tracker.

        Args:
            daily_budget_usd: Spend cap per UTC day
            today: Returns the current UTC date
        """
        if daily_budget_usd <= 0:
            raise ValueError("daily_budget_usd must be > 0")
        self.daily_budget_usd = daily_budget_usd
        self._today = today
        self._spent = 0.0
        self._last_reset = today()
        self._lock = threading.Lock()

    def _check_reset(self) -> None:
        current = self._today()
        if current != self._last_reset:
            log.info(
                "budget.daily_reset",
                previous_date=self._last_reset.isoformat(),
                spent_usd=round(self._spent, 6),
            )
            self._spent = 0.0
            self._last_reset = current

    def can_spend(self, amount: float) -> bool:
        """True when amount fits under today's remaining budget."""
        if amount < 0:
            raise ValueError("amount cannot be negative")
        with self._lock:
            self._check_reset()
            return self._spent + amount <= self.daily_budget_usd

    def record_cost(self, amount: float) -> None:
        """Add spend to today's total unconditionally."""
        if amount < 0:
            raise ValueError("amount cannot be negative")
        with self._lock:
            self._check_reset()
            self._spent += amount

    def remaining(self) -> float:
        """Budget left today in USD."""
        with self._lock:
            self._check_reset()
            return max(0.0, self.daily_budget_usd - self._spent)

    def spent(self) -> float:
        """Spend recorded today in USD."""
        with self._lock:
            self._check_reset()
            return self._spent

    def reset(self) -> None:
        """Zero today's spend. Used for testing."""
        with self._lock:
            self._spent = 0.0
            self._last_reset = self._today()

    def stats(self) -> dict:
        spent = self.spent()
        return {
            "daily_budget": self.daily_budget_usd,
            "daily_spend": spent,
            "remaining_budget": max(0.0, self.daily_budget_usd - spent),
            "percent_used": spent / self.daily_budget_usd * 100,
        }


@dataclass
class GuardrailConfig:
    """Configuration for guardrail enforcement."""
    max_cost_per_request: Optional[float] = None


def enforce_guardrails(
    operation: str,
    rate_limiter: Optional[RateLimiter],
    budget_tracker: Optional[BudgetTracker],
    projected_cost: float,
    config: Optional[GuardrailConfig] = None,
) -> EnforcementAction:
    """
    Enforce guardrails before a paid external call.

    Enforcement Order:
    1. Request rate - THROTTLE when the window is full
    2. Daily budget - BLOCK when the projected cost does not fit
    3. Per-request max cost - BLOCK when the projection exceeds the ceiling

    Args:
        operation: Name of the call being guarded, for messages and logs
        rate_limiter: Limiter to consult, or None to skip the rate check
        budget_tracker: Budget to consult, or None to skip the spend check
        projected_cost: Conservative cost estimate of the call in USD
        config: Optional per-request ceiling

    Returns:
        EnforcementAction.ALLOW when every check passes

    Raises:
        GuardrailViolation: If the call must be throttled or blocked
    """
    config = config or GuardrailConfig()

    if rate_limiter is not None and not rate_limiter.can_proceed():
        retry_after = rate_limiter.time_until_reset_ms()
        log.warning("guardrails.throttled", operation=operation, retry_after_ms=retry_after)
        raise GuardrailViolation(
            f"Rate limit of {rate_limiter.max_requests_per_minute} requests/minute "
            f"reached for {operation}; retry in {retry_after}ms",
            EnforcementAction.THROTTLE,
            retry_after_ms=retry_after,
        )

    if budget_tracker is not None and not budget_tracker.can_spend(projected_cost):
        log.warning(
            "guardrails.budget_blocked",
            operation=operation,
            projected_cost=round(projected_cost, 6),
            remaining=round(budget_tracker.remaining(), 6),
        )
        raise GuardrailViolation(
            f"Daily budget of ${budget_tracker.daily_budget_usd:.2f} would be exceeded by "
            f"{operation} (projected ${projected_cost:.4f}, "
            f"remaining ${budget_tracker.remaining():.4f})",
            EnforcementAction.BLOCK,
        )

    if (config.max_cost_per_request is not None and
            projected_cost > config.max_cost_per_request):
        raise GuardrailViolation(
            f"Projected cost ${projected_cost:.4f} exceeds maximum allowed "
            f"${config.max_cost_per_request:.4f} for {operation}",
            EnforcementAction.BLOCK,
        )

    return EnforcementAction.ALLOW


def record_guarded_call(
    rate_limiter: Optional[RateLimiter],
    budget_tracker: Optional[BudgetTracker],
    actual_cost: float,
) -> None:
    """Account for a call that was allowed and issued."""
    if rate_limiter is not None:
        rate_limiter.record()
    if budget_tracker is not None:
        budget_tracker.record_cost(actual_cost)
