import logging
import threading
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class CheckGuard:
    """In-flight site registry: at most one running check per site id in this process.

    Acquisition never waits. A second caller for the same site is told the
    check is already running and should skip.
    """

    def __init__(self):
        self._running: set[int] = set()
        self._lock = threading.Lock()

    def try_acquire(self, site_id: int) -> bool:
        with self._lock:
            if site_id in self._running:
                return False
            self._running.add(site_id)
            return True

    def release(self, site_id: int):
        with self._lock:
            self._running.discard(site_id)

    def is_running(self, site_id: int) -> bool:
        with self._lock:
            return site_id in self._running

    def active_ids(self) -> set[int]:
        with self._lock:
            return set(self._running)

    @contextmanager
    def hold(self, site_id: int):
        """Yields True if the slot was taken; releases it on every exit path."""
        acquired = self.try_acquire(site_id)
        if not acquired:
            logger.info("[GUARD] Site #%s is already being checked", site_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(site_id)
