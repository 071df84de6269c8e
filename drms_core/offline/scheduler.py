# =============================================================================
# drms_core/offline/scheduler.py
# Keyed Delayed-Task Scheduler
# =============================================================================
"""
DelayedTaskScheduler - one pending timer per key.

Scheduling a key that already has a pending task replaces it, so a queue
item never has two retries in flight. shutdown() cancels everything and
can be called any number of times.
"""

from __future__ import annotations
import threading
from typing import Callable, Dict, List

from drms_core.logging import get_logger

logger = get_logger(__name__)


class DelayedTaskScheduler:

    def __init__(self, name: str = "scheduler"):
        self.name = name
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def schedule(self, key: str, delay: float, fn: Callable[[], None]) -> bool:
        """
        Run `fn` after `delay` seconds, replacing any task pending under `key`.

        Returns:
            False when the scheduler has been shut down
        """
        with self._lock:
            if self._closed:
                logger.debug(f"{self.name}: ignoring schedule of {key} after shutdown")
                return False

            existing = self._timers.pop(key, None)
            if existing is not None:
                existing.cancel()

            timer = threading.Timer(max(0.0, delay), self._run, args=(key, fn))
            timer.daemon = True
            timer.name = f"{self.name}:{key}"
            self._timers[key] = timer
            timer.start()
        logger.debug(f"{self.name}: scheduled {key} in {delay:.1f}s")
        return True

    def _run(self, key: str, fn: Callable[[], None]) -> None:
        with self._lock:
            current = self._timers.get(key)
            if current is not threading.current_thread():
                return
            del self._timers[key]
        try:
            fn()
        except Exception as e:
            logger.error(f"{self.name}: task {key} failed: {e}")

    def cancel(self, key: str) -> bool:
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel_all(self) -> int:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        return len(timers)

    def pending(self) -> List[str]:
        with self._lock:
            return sorted(self._timers)

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        cancelled = self.cancel_all()
        logger.debug(f"{self.name}: shut down, {cancelled} pending tasks cancelled")
