"""
Time-boxed record of the last model identifier that answered successfully.

Advisory only: it reorders the candidate list so a known-good model is tried
first. Treating it as empty never changes correctness.
"""

import threading
import time
from typing import Callable, Optional


class ModelCache:
    """
    Single-entry cache: (model identifier, stored-at timestamp).

    - expires ttl_seconds after the last set()
    - invalidate() drops the entry (used when the model API answers 404)
    - thread-safe; one instance lives on app.state and is passed to relays
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._model: Optional[str] = None
        self._stored_at: float = 0.0

    def get(self) -> Optional[str]:
        with self._lock:
            if self._model is None:
                return None
            if self._clock() - self._stored_at >= self.ttl_seconds:
                self._model = None
                return None
            return self._model

    def set(self, model: str) -> None:
        with self._lock:
            self._model = model
            self._stored_at = self._clock()

    def invalidate(self, model: Optional[str] = None) -> None:
        """Drop the entry; when ``model`` is given, only if it is the cached one."""
        with self._lock:
            if model is None or model == self._model:
                self._model = None
