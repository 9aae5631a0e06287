import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from .errors import RateLimitExceeded


class RateLimiter:
    """
    Sliding-window request log keyed by an arbitrary string (the RPC URL).

    `allow()` checks and records in one synchronous step, so concurrent
    coroutines cannot both slip through the last free slot. Keys whose log
    has emptied are dropped, at most once per window for idle keys.
    """

    def __init__(self, max_requests: int = 100, window_seconds: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    def _prune(self, key: str, now: float) -> Deque[float]:
        log = self._requests.get(key)
        if log is None:
            return deque()
        while log and now - log[0] >= self.window_seconds:
            log.popleft()
        if not log:
            del self._requests[key]
        return log

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        for key in list(self._requests):
            self._prune(key, now)

    def allow(self, key: str) -> bool:
        now = self._clock()
        self._sweep(now)
        log = self._prune(key, now)
        if len(log) >= self.max_requests:
            return False
        log.append(now)
        self._requests[key] = log
        return True

    def acquire(self, key: str) -> None:
        if not self.allow(key):
            raise RateLimitExceeded(key)

    def remaining(self, key: str) -> int:
        log = self._prune(key, self._clock())
        return max(0, self.max_requests - len(log))

    def tracked_keys(self) -> int:
        return len(self._requests)

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._requests.clear()
        else:
            self._requests.pop(key, None)
