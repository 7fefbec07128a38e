# renovatr/rate_limiter.py

import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "20"))
RATE_LIMIT_WINDOW_SECONDS = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))


class RateLimiter(Protocol):
    def check(self, identifier: str) -> bool:
        ...

    def reset_window(self, identifier: Optional[str] = None) -> None:
        ...

    def maybe_sweep(self) -> int:
        ...


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """
    Per-identifier fixed window counter.

    The first request of an identifier opens a window of `window_seconds`; up to
    `max_requests` are admitted inside it. reset_window() closes the window for one
    identifier (or all of them) so the next request opens a fresh one.
    The clock is injectable for tests.
    """

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, _Window] = {}
        self._last_sweep = clock()

    def check(self, identifier: str) -> bool:
        now = self._clock()
        with self._lock:
            window = self._windows.get(identifier)
            if window is None or now > window.reset_at:
                self._windows[identifier] = _Window(count=1, reset_at=now + self.window_seconds)
                return True
            if window.count >= self.max_requests:
                return False
            window.count += 1
            return True

    def retry_after(self, identifier: str) -> float:
        now = self._clock()
        with self._lock:
            window = self._windows.get(identifier)
            if window is None or window.count < self.max_requests:
                return 0.0
            return max(0.0, window.reset_at - now)

    def reset_window(self, identifier: Optional[str] = None) -> None:
        with self._lock:
            if identifier is None:
                self._windows.clear()
            else:
                self._windows.pop(identifier, None)

    def sweep_expired(self) -> int:
        """Drop windows that have already closed. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, w in self._windows.items() if now > w.reset_at]
            for k in expired:
                del self._windows[k]
        return len(expired)

    def maybe_sweep(self) -> int:
        """sweep_expired() at most once per window; called on every request by the HTTP layer."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep < self.window_seconds:
                return 0
            self._last_sweep = now
        return self.sweep_expired()
