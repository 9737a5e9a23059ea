import threading
import time
from typing import Callable, Dict, List, Optional, Tuple


class RateLimiter:
    """In-memory sliding window rate limiter, one window per key.

    Keys whose hits have all left the window are swept at most once per
    window, so the table only holds clients seen recently.
    """

    def __init__(self, window_seconds: int = 900, max_requests: int = 10000,
                 clock: Optional[Callable[[], float]] = None):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock or time.monotonic
        self._requests: Dict[str, List[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = self._clock()

    @classmethod
    def from_settings(cls, settings) -> "RateLimiter":
        return cls(settings.rate_limit_window_seconds, settings.rate_limit_max_requests)

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)

    def check(self, key: str) -> Tuple[bool, Optional[int]]:
        """
        Record a hit for `key` if allowed.
        Returns: (allowed, retry_after_seconds)
        """
        now = self._clock()
        window_start = now - self.window_seconds

        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(window_start)
                self._last_sweep = now

            hits = [ts for ts in self._requests.get(key, ()) if ts > window_start]

            if len(hits) >= self.max_requests:
                self._requests[key] = hits
                retry_after = int(min(hits) + self.window_seconds - now) + 1
                return False, retry_after

            hits.append(now)
            self._requests[key] = hits
            return True, None

    def _sweep(self, window_start: float) -> None:
        # Caller holds the lock.
        stale = [k for k, hits in self._requests.items() if not hits or hits[-1] <= window_start]
        for k in stale:
            del self._requests[k]

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()
            self._last_sweep = self._clock()
