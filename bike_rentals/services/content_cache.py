"""
Process-wide TTL cache for slow-changing external content.

Fails open: when a refresh raises, the last good value (possibly None) is
served and the next call tries again.
"""
import logging
import threading
import time
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ContentCache(Generic[T]):
    def __init__(
        self,
        fetch: Callable[[], Optional[T]],
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        name: str = "content",
    ):
        self.fetch = fetch
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._value: Optional[T] = None
        self._expires_at: float | None = None

    @property
    def is_fresh(self) -> bool:
        return self._expires_at is not None and self._clock() < self._expires_at

    def get(self) -> Optional[T]:
        with self._lock:
            if self.is_fresh:
                return self._value
            try:
                value = self.fetch()
            except Exception:
                logger.warning("Refreshing %s cache failed; serving stale value", self.name, exc_info=True)
                return self._value
            self._value = value
            self._expires_at = self._clock() + self.ttl_seconds
            return value

    def invalidate(self):
        """Force the next ``get`` to refetch; the stale value stays as fallback"""
        with self._lock:
            self._expires_at = None
