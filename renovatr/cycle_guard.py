# renovatr/cycle_guard.py

import threading
from contextlib import contextmanager
from typing import Iterator, Set

from renovatr.errors import CycleInProgressError


class InFlightRegistry:
    """
    Process-local set of entity keys with a cycle currently running.

    - One in-flight cycle per entity; a second one is rejected, never queued.
    - Keys are released when the cycle ends, whatever the outcome.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keys: Set[str] = set()

    def acquire(self, key: str) -> None:
        with self._lock:
            if key in self._keys:
                raise CycleInProgressError(f"A conversation cycle is already running for {key}")
            self._keys.add(key)

    def release(self, key: str) -> None:
        with self._lock:
            self._keys.discard(key)

    def is_busy(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        self.acquire(key)
        try:
            yield
        finally:
            self.release(key)
