"""Rate-limit policy: sliding-window budgets for Binance request weight and order count."""
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

REQUEST_WEIGHT = "request_weight"
ORDERS = "orders"


@dataclass
class RateLimitQuota:
    """Budget of ``limit`` units (request weight or order count) per window."""
    limit: int
    window_seconds: float


@dataclass
class RateLimitState:
    """Weighted request history for a single bucket."""
    quota: RateLimitQuota
    clock: Callable[[], float] = time.monotonic
    entries: List[Tuple[float, int]] = field(default_factory=list)  # (timestamp, weight)

    def _prune(self) -> None:
        cutoff = self.clock() - self.quota.window_seconds
        self.entries = [(t, w) for t, w in self.entries if t > cutoff]

    @property
    def used(self) -> int:
        self._prune()
        return sum(w for _, w in self.entries)

    def is_allowed(self, weight: int = 1) -> bool:
        return self.used + weight <= self.quota.limit

    def record(self, weight: int = 1) -> None:
        self.entries.append((self.clock(), weight))

    def time_until_allowed(self, weight: int = 1) -> float:
        """Seconds until ``weight`` fits in the window. 0 if it fits now."""
        if self.is_allowed(weight):
            return 0.0
        now = self.clock()
        excess = self.used + weight - self.quota.limit
        freed = 0
        for t, w in self.entries:
            freed += w
            if freed >= excess:
                return max(0.0, t + self.quota.window_seconds - now)
        # weight exceeds the whole quota; it never fits
        return float("inf")


class RateLimitManager:
    """Enforce Binance quotas per bucket."""

    # Binance spot defaults
    DEFAULT_QUOTAS = {
        REQUEST_WEIGHT: RateLimitQuota(limit=6000, window_seconds=60),
        ORDERS: RateLimitQuota(limit=50, window_seconds=10),
    }

    def __init__(
        self,
        quotas: Optional[Dict[str, RateLimitQuota]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.quotas = quotas or self.DEFAULT_QUOTAS.copy()
        self.clock = clock
        self.sleep = sleep
        self.states: Dict[str, RateLimitState] = {}

    @classmethod
    def from_limits(cls, request_weight_per_minute: int, orders_per_10s: int, **kwargs) -> "RateLimitManager":
        return cls(
            {
                REQUEST_WEIGHT: RateLimitQuota(limit=request_weight_per_minute, window_seconds=60),
                ORDERS: RateLimitQuota(limit=orders_per_10s, window_seconds=10),
            },
            **kwargs,
        )

    def _get_state(self, bucket: str) -> RateLimitState:
        if bucket not in self.states:
            self.states[bucket] = RateLimitState(quota=self.quotas[bucket], clock=self.clock)
        return self.states[bucket]

    def is_allowed(self, bucket: str, weight: int = 1) -> bool:
        return self._get_state(bucket).is_allowed(weight)

    def record_request(self, bucket: str, weight: int = 1) -> None:
        self._get_state(bucket).record(weight)

    def time_until_allowed(self, bucket: str, weight: int = 1) -> float:
        return self._get_state(bucket).time_until_allowed(weight)

    def wait_if_needed(self, bucket: str, weight: int = 1, max_wait: float = 60.0) -> bool:
        """Wait until ``weight`` fits, then record it.

        Returns:
            True if the request was recorded, False if it would wait past ``max_wait``
        """
        start = self.clock()
        while not self.is_allowed(bucket, weight):
            wait_time = self.time_until_allowed(bucket, weight)
            elapsed = self.clock() - start
            if elapsed + wait_time > max_wait:
                return False
            self.sleep(wait_time)

        self.record_request(bucket, weight)
        return True
