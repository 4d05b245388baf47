"""Rate limiting utilities."""

import asyncio
from collections.abc import Callable
from time import monotonic

from cachetools import TTLCache

from src import log

__all__ = ["TieredRateLimiter"]


class TieredRateLimiter:
    """Async rate limiter enforcing a minimum delay between requests.

    The delay depends on the account tier (free or supporter). The tier is
    resolved through `tier_resolver` and cached for `tier_check_interval`
    seconds so that a settings lookup does not happen before every request.

    The read-check-sleep-update sequence runs under an `asyncio.Lock`, so
    concurrent callers sharing one limiter are serialized and can never slip
    past the delay check together.

    The limiter relies on the developer to call `acquire` before making a request.
    """

    def __init__(
        self,
        log_name: str,
        *,
        tier_resolver: Callable[[], bool],
        free_delay: float = 0.1,
        supporter_delay: float = 0.025,
        tier_check_interval: float = 60,
    ) -> None:
        """Initialize the limiter.

        Args:
            log_name (str): Name used as a prefix in debug logs
            tier_resolver (Callable[[], bool]): Returns True for the supporter tier
            free_delay (float): Minimum seconds between free tier requests
            supporter_delay (float): Minimum seconds between supporter requests
            tier_check_interval (float): Seconds the resolved tier is cached for
        """
        self.log_name = log_name
        self.free_delay = free_delay
        self.supporter_delay = supporter_delay
        self._tier_resolver = tier_resolver
        self._tier_cache: TTLCache[str, bool] = TTLCache(
            maxsize=1, ttl=max(tier_check_interval, 0.001)
        )

        self.last_request_time = 0.0
        self._lock = asyncio.Lock()

    def is_supporter(self) -> bool:
        """Return the cached tier, resolving it again once the cache expires."""
        tier = self._tier_cache.get("tier")
        if tier is None:
            tier = bool(self._tier_resolver())
            self._tier_cache["tier"] = tier
            log.debug(
                f"{self.log_name}: Resolved rate limit tier "
                f"$$'{'supporter' if tier else 'free'}'$$"
            )
        return tier

    def invalidate_tier(self) -> None:
        """Forget the cached tier so the next request resolves it again."""
        self._tier_cache.clear()

    @property
    def delay(self) -> float:
        """Minimum seconds between two requests for the current tier."""
        return self.supporter_delay if self.is_supporter() else self.free_delay

    async def acquire(self) -> None:
        """Sleep until the minimum interval since the last request has passed."""
        async with self._lock:
            delay = self.delay
            while self.last_request_time > 0:
                elapsed = monotonic() - self.last_request_time
                if elapsed >= delay:
                    break
                await asyncio.sleep(delay - elapsed)
            self.last_request_time = monotonic()
