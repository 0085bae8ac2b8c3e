"""
Rate Limiter - Per-key trailing-window buckets

A key (user id, channel id, DM user id) is limited once it has been
registered max_hits times inside the trailing window. Limits expire
implicitly as old registrations fall out of the window.
"""

from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Optional, TYPE_CHECKING
import logging
import time

if TYPE_CHECKING:
    from .config import RateLimitingConfig

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    One bucket: max_hits registrations per window_seconds, per key.

    Checking never registers. Callers register only when the message
    actually produced an effect, so passive users are not penalized.
    """

    def __init__(
        self,
        window_seconds: float,
        max_hits: int,
        name: str = "bucket",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self.max_hits = max_hits
        self.name = name
        self._clock = clock

        # Registration timestamps per key, oldest first
        self._hits: Dict[int, Deque[float]] = defaultdict(deque)

    def _prune(self, key: int, now: float) -> Deque[float]:
        hits = self._hits[key]
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def limit_duration(self, key: int) -> Optional[float]:
        """
        Check if key is limited.

        Returns: None if not limited, else seconds until the oldest
        registration leaves the window (always > 0)
        """
        now = self._clock()
        hits = self._prune(key, now)

        if len(hits) < self.max_hits:
            if not hits:
                del self._hits[key]
            return None

        remaining = hits[0] + self.window_seconds - now
        logger.debug(
            f"{self.name} {key}: limited ({len(hits)}/{self.max_hits}), "
            f"{remaining:.1f}s remaining"
        )
        return max(remaining, 1e-6)

    def register(self, key: int):
        """Record one registration for key"""
        now = self._clock()
        hits = self._prune(key, now)
        hits.append(now)
        logger.debug(f"{self.name} {key}: registered ({len(hits)}/{self.max_hits})")

    def get_stats(self, key: int) -> Dict:
        """Get current bucket stats for debugging/monitoring"""
        now = self._clock()
        hits = self._prune(key, now)
        return {
            "hits": len(hits),
            "max_hits": self.max_hits,
            "window_seconds": self.window_seconds,
            "is_limited": len(hits) >= self.max_hits,
        }

    def reset(self, key: int):
        """Reset limits for key (testing/manual intervention)"""
        self._hits.pop(key, None)
        logger.info(f"{self.name} {key}: rate limit reset")


class RateLimiters:
    """The three independent buckets the dispatcher consults"""

    def __init__(
        self,
        config: "RateLimitingConfig",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.user = RateLimiter(
            config.user.window_seconds, config.user.max_messages, name="user", clock=clock
        )
        self.channel = RateLimiter(
            config.channel.window_seconds, config.channel.max_messages, name="channel", clock=clock
        )
        self.dm = RateLimiter(
            config.dm.window_seconds, config.dm.max_messages, name="dm", clock=clock
        )
        self.grace_seconds = config.grace_seconds
