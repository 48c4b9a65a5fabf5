import time
from threading import Lock
from typing import Dict, Tuple


class RateLimiter:
    """
    Simple in-memory rate limiter using a fixed window algorithm.
    Tracks requests per identifier (user id) within a one minute window.
    """

    def __init__(self, requests_per_minute: int = 60, window_seconds: float = 60.0):
        self.rpm = requests_per_minute
        self.window = window_seconds
        # identifier -> (count, window_start_time)
        self.requests: Dict[str, Tuple[int, float]] = {}
        self._lock = Lock()

    def is_allowed(self, identifier: str) -> bool:
        now = time.monotonic()
        with self._lock:
            count, start_time = self.requests.get(identifier, (0, now))

            if now - start_time > self.window:
                self.requests[identifier] = (1, now)
                return True

            if count >= self.rpm:
                return False

            self.requests[identifier] = (count + 1, start_time)
            return True

    def cleanup(self) -> None:
        """Drop expired windows so idle identifiers don't accumulate."""
        now = time.monotonic()
        with self._lock:
            expired = [k for k, v in self.requests.items() if now - v[1] > self.window]
            for k in expired:
                del self.requests[k]

    def reset(self) -> None:
        with self._lock:
            self.requests.clear()
