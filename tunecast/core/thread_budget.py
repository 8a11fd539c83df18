"""
Worker thread budget shared by concurrently running transcode processes.
"""

import math
import os
import logging
import threading
from contextlib import contextmanager

logger = logging.getLogger(__name__)

CPU_THREAD_COUNT = os.cpu_count() or 1


class ThreadBudget:
    """
    Splits a fixed thread budget among active consumers.

    Each consumer gets max(1, floor(target / active)) threads, computed at
    the moment it registers. Shares are not re-balanced when consumers come
    and go later.
    """

    def __init__(self, target_threads=None, limit_to_cpu: bool = True):
        self.limit_to_cpu = limit_to_cpu
        self._target = 1
        self._active = 0
        self._lock = threading.Lock()
        self._set_target(CPU_THREAD_COUNT if target_threads is None else target_threads)

    def _set_target(self, count):
        if (isinstance(count, bool) or not isinstance(count, (int, float))
                or math.isnan(count) or math.isinf(count)):
            logger.error("Invalid thread budget %r, keeping %d", count, self._target)
            return
        self._target = max(1, int(count))
        if self.limit_to_cpu:
            self._target = min(self._target, CPU_THREAD_COUNT)

    @property
    def target(self) -> int:
        return self._target

    @property
    def active(self) -> int:
        return self._active

    def _share(self) -> int:
        if self._active <= 0:
            return self._target
        return max(1, self._target // self._active)

    def acquire(self) -> int:
        """Register a consumer and return the threads it may use."""
        with self._lock:
            self._active += 1
            return self._share()

    def release(self):
        with self._lock:
            if self._active <= 0:
                logger.warning("ThreadBudget.release() without matching acquire()")
                return
            self._active -= 1

    def available(self) -> int:
        """Current per-consumer share, without registering."""
        with self._lock:
            return self._share()

    @contextmanager
    def slot(self):
        threads = self.acquire()
        try:
            yield threads
        finally:
            self.release()
