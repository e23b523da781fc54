import asyncio
from asyncio import Lock
from collections import deque
from dataclasses import dataclass
from time import monotonic
from typing import Deque, Dict, Optional


@dataclass
class RateLimitConfig:
    requests_per_window: int
    window_seconds: float = 60
    retry_interval: float = 0.1


class AsyncRateLimiter:
    """Sliding-window limiter shared by every request a client makes."""

    def __init__(self, config: RateLimitConfig):
        if config.requests_per_window <= 0:
            raise ValueError("requests_per_window must be positive")
        self.config = config
        self._requests: Deque[float] = deque()
        self._lock = Lock()

    def _expire(self, now: float) -> None:
        while self._requests and now - self._requests[0] >= self.config.window_seconds:
            self._requests.popleft()

    async def acquire(self) -> bool:
        async with self._lock:
            now = monotonic()
            self._expire(now)
            if len(self._requests) < self.config.requests_per_window:
                self._requests.append(now)
                return True
            return False

    async def time_until_next_slot(self) -> float:
        async with self._lock:
            now = monotonic()
            self._expire(now)
            if len(self._requests) < self.config.requests_per_window:
                return 0.0
            return max(0.0, self.config.window_seconds - (now - self._requests[0]))

    async def wait_for_token(self, timeout: Optional[float] = None) -> bool:
        start = monotonic()
        while True:
            if await self.acquire():
                return True
            delay = max(self.config.retry_interval, min(await self.time_until_next_slot(), 1.0))
            if timeout is not None:
                remaining = timeout - (monotonic() - start)
                if remaining <= 0:
                    return False
                delay = min(delay, remaining)
            await asyncio.sleep(delay)
            if timeout is not None and monotonic() - start >= timeout:
                return False

    async def get_current_usage(self) -> Dict[str, int]:
        async with self._lock:
            self._expire(monotonic())
            return {
                "current_requests": len(self._requests),
                "window_limit": self.config.requests_per_window,
            }

    async def cleanup(self) -> None:
        async with self._lock:
            self._requests.clear()
