"""
history_window.py — Bounded, time-evicting store of observations.

The window is the forecast model's only source of input and training data.

Invariants:
    • Stored order is chronological order.
    • After every append, each element's `captured_at` lies within
      [newest − retention, newest].
    • Eviction happens lazily inside `append`, never during a read.
    • Size is unbounded in count, bounded in time span.

Callers must tolerate a window shorter than any requested `n` during
pipeline warm-up; `recent(n)` simply returns what is there.
"""

from __future__ import annotations

import bisect
import logging
import threading
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from floodwatch.app.core.config import settings
from floodwatch.app.ml.models import Observation

logger = logging.getLogger(__name__)


class HistoryWindow:
    """
    Chronological observation history limited to a retention horizon.

    Thread-safe: the tick path appends while the training worker reads a
    consistent copy via `snapshot()`.
    """

    def __init__(self, retention: Optional[timedelta] = None):
        if retention is None:
            retention = timedelta(hours=settings.HISTORY_RETENTION_HOURS)
        self.retention = retention
        self._items: List[Observation] = []
        self._times: List[datetime] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def latest(self) -> Optional[Observation]:
        with self._lock:
            return self._items[-1] if self._items else None

    def append(self, obs: Observation) -> bool:
        """
        Insert an observation, then evict everything older than the horizon.

        Returns False when `obs` itself fell outside the horizon and was
        evicted straight away.
        """
        with self._lock:
            if not self._times or obs.captured_at >= self._times[-1]:
                self._items.append(obs)
                self._times.append(obs.captured_at)
            else:
                logger.warning(
                    "Late observation at %s (newest %s); inserting in order",
                    obs.captured_at.isoformat(), self._times[-1].isoformat(),
                )
                idx = bisect.bisect_right(self._times, obs.captured_at)
                self._items.insert(idx, obs)
                self._times.insert(idx, obs.captured_at)

            cutoff = self._times[-1] - self.retention
            self._evict_locked(cutoff)
            return obs.captured_at >= cutoff

    def recent(self, n: int) -> List[Observation]:
        """Most recent `n` observations in chronological order (fewer if short)."""
        if n <= 0:
            return []
        with self._lock:
            return self._items[-n:]

    def evict_older_than(self, cutoff: datetime) -> int:
        """Drop observations captured before `cutoff`.  Returns how many were dropped."""
        with self._lock:
            return self._evict_locked(cutoff)

    def snapshot(self) -> Tuple[Observation, ...]:
        """Immutable copy of the whole window."""
        with self._lock:
            return tuple(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._times.clear()

    def _evict_locked(self, cutoff: datetime) -> int:
        idx = bisect.bisect_left(self._times, cutoff)
        if idx:
            del self._items[:idx]
            del self._times[:idx]
            logger.debug("Evicted %d observations older than %s", idx, cutoff.isoformat())
        return idx
