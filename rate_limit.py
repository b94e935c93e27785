"""Fixed-window rate limiting keyed by tool name."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from errors import ErrorCode, ObsidianError

DEFAULT_WINDOW_MS = 15 * 60 * 1000
DEFAULT_MAX_REQUESTS = 200
SWEEP_INTERVAL = 60.0

logger = logging.getLogger("obsidian_rest_mcp.rate_limit")


@dataclass
class RateWindow:
    count: int
    reset_time: float


class RateLimiter:
    """Counts calls per key inside a fixed window.

    Windows live in memory only. A background task started with
    :meth:`start` sweeps expired windows every ``sweep_interval`` seconds.

    Args:
        window_ms: Window length in milliseconds.
        max_requests: Calls allowed per key and window.
        sweep_interval: Seconds between sweeps.
        clock: Monotonic clock in seconds, injectable for tests.
    """

    def __init__(
        self,
        window_ms: int = DEFAULT_WINDOW_MS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        sweep_interval: float = SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window = window_ms / 1000
        self.max_requests = max_requests
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._windows: Dict[str, RateWindow] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def check(self, key: str) -> bool:
        """Record a call for ``key``; False when the window is already full."""
        now = self._clock()
        window = self._windows.get(key)
        if window is None or now > window.reset_time:
            self._windows[key] = RateWindow(count=1, reset_time=now + self.window)
            return True
        if window.count >= self.max_requests:
            return False
        window.count += 1
        return True

    def enforce(self, key: str) -> None:
        """Like :meth:`check` but raises ObsidianError (RATE_LIMIT_EXCEEDED) when denied."""
        if not self.check(key):
            raise ObsidianError(
                f"Rate limit exceeded for tool: {key}. Please try again later.",
                ErrorCode.RATE_LIMIT_EXCEEDED,
            )

    def info(self, key: str) -> Optional[Dict[str, float]]:
        window = self._windows.get(key)
        if window is None:
            return None
        return {"remaining": max(0, self.max_requests - window.count), "reset_time": window.reset_time}

    def sweep(self) -> int:
        """Delete expired windows. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, window in self._windows.items() if now > window.reset_time]
        for key in expired:
            del self._windows[key]
        return len(expired)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.debug("Swept %d expired rate limit windows", removed)

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def close(self) -> None:
        """Cancel the sweep task."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
