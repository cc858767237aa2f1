"""
Change observer.

Polls the monitored store on a fixed interval and turns "something changed"
into bounded batches of item ids. The change signal is the mutation-log size:
cheap to sample, and only when it moves does the observer re-query the store.

The observer never terminates itself. A transiently unreadable store skips the
tick; a failing read becomes an ObserverError event and the next tick tries
again from the same position.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable

from .config import SourceConfig
from .events import ChangeEvent, Heartbeat, ItemsAdded, ItemsModified, ObserverError
from .fingerprint import utcnow
from .source import MessageStoreReader

logger = logging.getLogger(__name__)


class ChangeObserver:
    """
    Poll-driven change detector.

    Args:
        reader: Read-only accessor to the monitored store
        config: Source settings (batch size, backfill, lookback)
        tracked_ids: Callable returning ids with a live baseline
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        reader: MessageStoreReader,
        config: SourceConfig,
        tracked_ids: Callable[[], Iterable[int]],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.reader = reader
        self.config = config
        self._tracked_ids = tracked_ids
        self._clock = clock

        self._last_size: int | None = None
        self._last_poll: datetime | None = None
        self._backlog: list[int] = []

    @property
    def backlog(self) -> tuple[int, ...]:
        """Ids found but not yet emitted because the batch cap was reached."""
        return tuple(self._backlog)

    def poll(self) -> list[ChangeEvent]:
        """
        Run one observation tick.

        Returns:
            Events for this tick, possibly empty
        """
        try:
            size = self.reader.log_size()
        except OSError as e:
            logger.debug("Change signal unavailable, skipping tick: %s", e)
            return []
        if size is None:
            logger.debug("Monitored store not readable, skipping tick")
            return []

        changed_signal = size != self._last_size
        if not changed_signal and not self._backlog:
            return []

        now = self._clock()
        try:
            candidates = self._collect(now, changed_signal)
        except Exception as e:
            logger.error("Observer read failed: %s", e)
            return [ObserverError(message=f"{type(e).__name__}: {e}")]

        # State only advances after a successful read, and the query marker
        # only on ticks that actually queried changed rows
        self._last_size = size
        if changed_signal:
            self._last_poll = now

        batch, self._backlog = self._split(candidates)
        events: list[ChangeEvent] = []

        if batch:
            tracked = set(self._tracked_ids())
            added = tuple(i for i in batch if i not in tracked)
            modified = tuple(i for i in batch if i in tracked)
            if added:
                events.append(ItemsAdded(ids=added))
            if modified:
                events.append(ItemsModified(ids=modified))

        if changed_signal:
            events.append(Heartbeat(log_size=size, timestamp=now))

        if self._backlog:
            logger.debug("%d changed ids deferred to the next tick", len(self._backlog))
        return events

    def _collect(self, now: datetime, changed_signal: bool) -> list[int]:
        """Backlog first, then changed rows, then vanished tracked ids; deduplicated."""
        changed: list[int] = []
        vanished: list[int] = []

        if changed_signal:
            if self._last_poll is None:
                rows = (
                    self.reader.get_changed_since(None, self.config.initial_backfill)
                    if self.config.initial_backfill
                    else []
                )
            else:
                # Uncapped: anything past max_batch_size waits in the backlog
                since = self._last_poll - timedelta(seconds=self.config.lookback_seconds)
                rows = self.reader.get_changed_since(since, None)
            changed = [r.id for r in rows]

            tracked = list(self._tracked_ids())
            if tracked:
                present = self.reader.existing(tracked)
                vanished = [i for i in tracked if i not in present]

        return list(dict.fromkeys([*self._backlog, *changed, *vanished]))

    def _split(self, candidates: list[int]) -> tuple[list[int], list[int]]:
        """Cap the batch; the remainder waits for later ticks."""
        limit = self.config.max_batch_size
        return candidates[:limit], candidates[limit:]
