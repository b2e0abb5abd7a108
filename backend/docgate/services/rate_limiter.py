"""
DocGate Backend - Rate Limiter
==============================

What:  Fixed-window request counters keyed by (route class, client IP).
How:   Each bucket holds a count and the instant its window resets. The first
       request after the reset instant opens a new window; once the count
       reaches the rule's maximum, every further request in that window is
       rejected.
Who:   Owned by the app factory and handed to RateLimitMiddleware. Tests build
       fresh instances with a fake clock.

Algorithm: Fixed Window Counter
    window opens at t0 on first hit
    hits 1..max        → admitted
    hit max+1..        → rejected, retry_after = ceil(t0 + window - now)
    now >= t0 + window → counter resets on the next hit

Concurrency:
    Every bucket carries its own lock, so unrelated clients and route classes
    never contend. Buckets are created with dict.setdefault (atomic under the
    GIL). Pruning retires a bucket under its lock before removing it; a
    caller that raced with the prune sees `retired` and fetches a fresh one,
    so no hit is ever counted in an orphaned bucket.
"""

import itertools
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Tuple

from docgate.routing import RouteClass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: float

    def __post_init__(self):
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")


@dataclass(frozen=True)
class RateDecision:
    """
    Outcome of one admission check.

    `limit` and `remaining` are None when the route class has no rule.
    `retry_after` is whole seconds until the window rolls over.
    """

    allowed: bool
    limit: Optional[int] = None
    remaining: Optional[int] = None
    retry_after: int = 0


UNLIMITED = RateDecision(allowed=True)


class _Bucket:
    __slots__ = ("lock", "count", "reset_at", "retired")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.count = 0
        self.reset_at = 0.0
        self.retired = False


class RateLimiter:
    """
    In-memory limiter with one independent rule per route class.

    Scope: a single process. Each uvicorn worker keeps its own table.
    """

    def __init__(
        self,
        rules: Mapping[RouteClass, RateLimitRule],
        clock: Callable[[], float] = time.monotonic,
        prune_every: int = 1000,
    ):
        self._rules: Dict[RouteClass, RateLimitRule] = dict(rules)
        self._buckets: Dict[Tuple[RouteClass, str], _Bucket] = {}
        self._clock = clock
        self._prune_every = prune_every
        self._calls = itertools.count(1)

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], float] = time.monotonic) -> "RateLimiter":
        return cls(
            {
                RouteClass.GENERAL: RateLimitRule(
                    settings.rate_limit_general_requests, settings.rate_limit_general_window
                ),
                RouteClass.UPLOAD: RateLimitRule(
                    settings.rate_limit_upload_requests, settings.rate_limit_upload_window
                ),
                RouteClass.HEAVY: RateLimitRule(
                    settings.rate_limit_heavy_requests, settings.rate_limit_heavy_window
                ),
            },
            clock=clock,
        )

    def rule_for(self, route_class: RouteClass) -> Optional[RateLimitRule]:
        return self._rules.get(route_class)

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)

    def admit(self, route_class: RouteClass, client_id: str) -> RateDecision:
        """
        Count one request from `client_id` against `route_class`.

        Returns an allowed decision while the window has budget left and a
        rejected one (with retry_after) after it is spent. Classes without a
        rule are always admitted.
        """
        rule = self._rules.get(route_class)
        if rule is None:
            return UNLIMITED

        key = (route_class, client_id)
        while True:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets.setdefault(key, _Bucket())
            with bucket.lock:
                if bucket.retired:
                    continue
                now = self._clock()
                if now >= bucket.reset_at:
                    bucket.count = 0
                    bucket.reset_at = now + rule.window_seconds
                retry_after = max(1, math.ceil(bucket.reset_at - now))
                if bucket.count >= rule.max_requests:
                    decision = RateDecision(
                        allowed=False,
                        limit=rule.max_requests,
                        remaining=0,
                        retry_after=retry_after,
                    )
                else:
                    bucket.count += 1
                    decision = RateDecision(
                        allowed=True,
                        limit=rule.max_requests,
                        remaining=rule.max_requests - bucket.count,
                        retry_after=retry_after,
                    )
            break

        if next(self._calls) % self._prune_every == 0:
            self.prune()
        return decision

    def prune(self) -> int:
        """Drop buckets whose window has elapsed. Returns how many were removed."""
        now = self._clock()
        removed = 0
        for key, bucket in list(self._buckets.items()):
            with bucket.lock:
                if bucket.retired or now < bucket.reset_at:
                    continue
                bucket.retired = True
                self._buckets.pop(key, None)
                removed += 1
        if removed:
            logger.debug("Pruned %d expired rate limit buckets", removed)
        return removed
