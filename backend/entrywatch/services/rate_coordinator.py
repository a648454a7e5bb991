"""Process-wide coordination of upstream API calls.

Every consumer (portfolio, watchlist, price refresher, analysis runs)
asks the same RateCoordinator before calling the upstream. It enforces:
- a global minimum interval between any two calls
- an exclusive "intensive operation" lock: while one consumer runs a long
  analysis cycle, every other consumer is denied and falls back to cache

Nothing here sleeps or waits. A denial means "skip this cycle".
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CoordinationState:
    """Mutable coordination state, guarded by RateCoordinator._lock.

    last_call_at only advances; at most one intensive owner at a time.
    """

    last_call_at: float | None = None
    intensive_owner: str | None = None


class RateCoordinator:
    """Gatekeeper for upstream calls shared by all consumers."""

    def __init__(
        self,
        min_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._state = CoordinationState()
        self._lock = threading.Lock()

    def _blocked_by_owner(self, consumer_id: str) -> bool:
        owner = self._state.intensive_owner
        return owner is not None and owner != consumer_id

    def _interval_elapsed(self, now: float) -> bool:
        last = self._state.last_call_at
        return last is None or now - last >= self.min_interval

    def request_api_call(self, consumer_id: str, purpose: str = "") -> bool:
        """
        Ask for permission to make one upstream call.

        Granted only when the minimum interval has elapsed and no other
        consumer holds the intensive-operation lock. A grant records the
        call time.

        Args:
            consumer_id: Identity of the caller
            purpose: Free-text description for logs

        Returns:
            True if the caller may make the call now
        """
        with self._lock:
            now = self._clock()
            if self._blocked_by_owner(consumer_id):
                owner = self._state.intensive_owner
                granted = False
                reason = f"intensive operation by {owner} in progress"
            elif not self._interval_elapsed(now):
                granted = False
                reason = "minimum interval not elapsed"
            else:
                last = self._state.last_call_at
                self._state.last_call_at = now if last is None else max(last, now)
                granted = True
                reason = ""

        if granted:
            logger.debug(f"[{consumer_id}] API call authorized for {purpose}")
        else:
            logger.info(f"[{consumer_id}] Deferring {purpose}: {reason}")
        return granted

    def can_make_api_call(self, consumer_id: str, purpose: str = "") -> bool:
        """Side-effect-free version of request_api_call()."""
        with self._lock:
            if self._blocked_by_owner(consumer_id):
                return False
            return self._interval_elapsed(self._clock())

    def time_until_next_call(self) -> float:
        """Seconds until the minimum interval has elapsed (0 if it has)."""
        with self._lock:
            last = self._state.last_call_at
            if last is None:
                return 0.0
            return max(0.0, self.min_interval - (self._clock() - last))

    def notify_intensive_operation_start(self, consumer_id: str) -> bool:
        """
        Acquire the intensive-operation lock.

        Returns:
            True if the caller now holds the lock (or already held it),
            False if another consumer holds it
        """
        with self._lock:
            owner = self._state.intensive_owner
            if owner is None:
                self._state.intensive_owner = consumer_id
                acquired = True
            else:
                acquired = owner == consumer_id

        if acquired:
            logger.info(f"{consumer_id} starting intensive API operations - others will defer")
        else:
            logger.info(f"{consumer_id} denied intensive operation: held by {owner}")
        return acquired

    def notify_intensive_operation_complete(self, consumer_id: str) -> None:
        """Release the lock if the caller holds it; otherwise do nothing."""
        with self._lock:
            released = self._state.intensive_owner == consumer_id
            if released:
                self._state.intensive_owner = None

        if released:
            logger.info(f"{consumer_id} completed intensive API operations")

    @property
    def active_owner(self) -> str | None:
        with self._lock:
            return self._state.intensive_owner

    def is_intensive_operation_active(self) -> bool:
        return self.active_owner is not None
