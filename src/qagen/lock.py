"""Process-local single-flight lock for pipeline passes.

A pass holds the lock from acquisition until its ``finally`` block releases
it. A holder older than ``max_hold_seconds`` is treated as wedged: the next
``try_acquire`` clears it and takes over. The overridden run is not
cancelled; its writes are keyed upserts and still apply.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from .models import LockStatus
from .utils import log_event, utc_now

Clock = Callable[[], datetime]


class SingleFlightLock:
    def __init__(
        self,
        max_hold_seconds: float,
        clock: Clock = utc_now,
        logger: logging.Logger | None = None,
    ) -> None:
        if max_hold_seconds <= 0:
            raise ValueError("max_hold_seconds must be positive")
        self.max_hold_seconds = float(max_hold_seconds)
        self._clock = clock
        self._logger = logger or logging.getLogger("qagen.lock")
        self._mutex = threading.Lock()
        self._holder: str | None = None
        self._acquired_at: datetime | None = None

    def try_acquire(self, owner_id: str) -> bool:
        if not owner_id:
            raise ValueError("owner_id is required")
        with self._mutex:
            now = self._clock()
            if self._holder is not None and self._acquired_at is not None:
                elapsed = (now - self._acquired_at).total_seconds()
                if elapsed <= self.max_hold_seconds:
                    return False
                log_event(
                    self._logger,
                    logging.WARNING,
                    "lock_forced_unlock",
                    previous_holder=self._holder,
                    new_holder=owner_id,
                    elapsed_seconds=round(elapsed, 3),
                    max_hold_seconds=self.max_hold_seconds,
                )
                self._clear()
            self._holder = owner_id
            self._acquired_at = now
            return True

    def release(self, owner_id: str) -> None:
        with self._mutex:
            if self._holder is not None and self._holder != owner_id:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "lock_release_mismatch",
                    releasing=owner_id,
                    holder=self._holder,
                )
            self._clear()

    def status(self) -> LockStatus:
        with self._mutex:
            holder = self._holder
            acquired_at = self._acquired_at
            now = self._clock()
        elapsed = (now - acquired_at).total_seconds() if acquired_at else None
        return LockStatus(holder=holder, acquired_at=acquired_at, elapsed_seconds=elapsed)

    def is_held(self) -> bool:
        with self._mutex:
            return self._holder is not None

    def _clear(self) -> None:
        self._holder = None
        self._acquired_at = None
