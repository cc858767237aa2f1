"""
Deletion tracker: the coordinating control loop.

States: IDLE → INITIALIZING → RUNNING → DRAINING → STOPPED

One tick is poll → classify → persist → dispatch, run to completion before
the next wait. The loop is the only writer of fingerprints and journal
entries. A stop request is only observed between ticks, so a batch is never
left half-applied.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Sequence

from .classifiers import ClassifierEngine
from .config import TrackerConfig
from .events import ChangeEvent, Heartbeat, ItemsAdded, ItemsModified, ObserverError, format_event
from .fingerprint import DeletionRecord, utcnow
from .observer import ChangeObserver
from .sinks import Sink, SinkDispatcher, build_sinks
from .source import MessageStoreReader, SqliteMessageStore
from .store import FingerprintStore

logger = logging.getLogger(__name__)


class TrackerState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass
class TrackerStats:
    """Counters for one tracker run."""

    ticks: int = 0
    events: int = 0
    items_processed: int = 0
    deletions_detected: int = 0
    records_dispatched: int = 0
    observer_errors: int = 0
    aborted_ticks: int = 0
    purged_fingerprints: int = 0
    purged_records: int = 0
    started_at: datetime | None = None
    last_event_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticks": self.ticks,
            "events": self.events,
            "items_processed": self.items_processed,
            "deletions_detected": self.deletions_detected,
            "records_dispatched": self.records_dispatched,
            "observer_errors": self.observer_errors,
            "aborted_ticks": self.aborted_ticks,
            "purged_fingerprints": self.purged_fingerprints,
            "purged_records": self.purged_records,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_event_at": self.last_event_at.isoformat() if self.last_event_at else None,
        }


class DeletionTracker:
    """
    Owns the store, observer, engine and sinks for one run.

    Usage:
        tracker = DeletionTracker(config)
        tracker.initialize()
        tracker.run()          # until request_stop() or fatal observer failure

    Args:
        config: Tracker configuration
        reader: Monitored store accessor (default: SqliteMessageStore on source.db_path)
        sinks: Sink instances (default: built from config.sinks)
        clock: Returns the current UTC time
        on_event: Optional callback receiving each formatted ChangeEvent
    """

    def __init__(
        self,
        config: TrackerConfig,
        reader: MessageStoreReader | None = None,
        sinks: Sequence[Sink] | None = None,
        clock: Callable[[], datetime] = utcnow,
        on_event: Callable[[str], None] | None = None,
    ):
        self.config = config
        self._reader = reader
        self._sinks = list(sinks) if sinks is not None else None
        self._clock = clock
        self._on_event = on_event

        self._state = TrackerState.IDLE
        self._stop = threading.Event()
        self._consecutive_errors = 0
        self._last_purge: datetime | None = None
        self.failed = False  # drained because the observer kept failing

        self.stats = TrackerStats()
        self.store: FingerprintStore | None = None
        self.engine: ClassifierEngine | None = None
        self.observer: ChangeObserver | None = None
        self.dispatcher: SinkDispatcher | None = None

    @property
    def state(self) -> TrackerState:
        return self._state

    def _transition(self, state: TrackerState) -> None:
        logger.info("Tracker %s → %s", self._state.value, state.value)
        self._state = state

    # --- Lifecycle ---

    def initialize(self) -> None:
        """
        Open the state database, purge expired state, and prepare sinks.

        Raises:
            RuntimeError: if the state database cannot be opened or the
                startup purge fails (fatal)
        """
        if self._state is not TrackerState.IDLE:
            raise RuntimeError(f"Cannot initialize tracker in state {self._state.value}")
        self._transition(TrackerState.INITIALIZING)

        try:
            self.store = FingerprintStore(self.config.state.db_path)
        except RuntimeError:
            self._transition(TrackerState.STOPPED)
            raise

        try:
            self._prepare()
        except Exception as e:
            logger.error("Tracker initialization failed: %s", e)
            if self.dispatcher is not None:
                self.dispatcher.finalize_all()
                self.dispatcher = None
            self.store.close()
            self.store = None
            self._transition(TrackerState.STOPPED)
            raise RuntimeError(f"Cannot initialize tracker: {type(e).__name__}: {e}") from e

        self.stats.started_at = self._clock()
        self._transition(TrackerState.RUNNING)

    def _prepare(self) -> None:
        store = self._require_store()
        self.purge()

        reader = self._reader or SqliteMessageStore(self.config.source.db_path, clock=self._clock)
        self._reader = reader
        self.engine = ClassifierEngine(
            store,
            reader,
            self.config.detection,
            filters=self.config.filters,
            clock=self._clock,
        )
        self.observer = ChangeObserver(reader, self.config.source, store.tracked_ids, clock=self._clock)

        sinks = self._sinks if self._sinks is not None else build_sinks(self.config.sinks)
        self.dispatcher = SinkDispatcher(sinks)
        active = self.dispatcher.initialize_all()
        if not active:
            logger.warning("No sinks active; detections will only be journaled")

    def _require_store(self) -> FingerprintStore:
        if self.store is None:
            raise RuntimeError("Tracker not initialized")
        return self.store

    def request_stop(self) -> None:
        """Ask the loop to drain after the current tick. Safe from signal handlers."""
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def shutdown(self) -> None:
        """Finalize sinks and close the store. Idempotent."""
        if self._state is TrackerState.STOPPED:
            return
        if self._state is not TrackerState.DRAINING:
            self._transition(TrackerState.DRAINING)

        if self.dispatcher is not None:
            self.dispatcher.finalize_all()
        if self.store is not None:
            self.store.close()

        self._transition(TrackerState.STOPPED)
        logger.info("Tracker stats: %s", self.stats.to_dict())

    # --- Loop ---

    def run(self, max_ticks: int | None = None) -> TrackerStats:
        """
        Tick on the configured interval until stopped.

        Args:
            max_ticks: Stop after this many ticks (None = unbounded)

        Returns:
            Final statistics
        """
        if self._state is TrackerState.IDLE:
            self.initialize()

        interval = self.config.source.poll_interval
        ticks = 0
        try:
            while self._state is TrackerState.RUNNING and not self._stop.is_set():
                self.tick()
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                if self._state is not TrackerState.RUNNING:
                    break
                # The only suspension point; returns early on stop
                self._stop.wait(interval)
        finally:
            self.shutdown()
        return self.stats

    def tick(self) -> list[DeletionRecord]:
        """
        Run one poll → classify → persist → dispatch cycle.

        Returns:
            Records journaled during this tick
        """
        if self._state is not TrackerState.RUNNING:
            raise RuntimeError(f"Cannot tick tracker in state {self._state.value}")
        if self.observer is None or self.engine is None or self.dispatcher is None:
            raise RuntimeError("Tracker not initialized")

        self.stats.ticks += 1
        events = self.observer.poll()
        self.stats.events += len(events)

        ids: list[int] = []
        failed = False
        for event in events:
            self._notify(event)
            if isinstance(event, ObserverError):
                failed = True
                self._observer_failed(event)
            elif isinstance(event, (ItemsAdded, ItemsModified)):
                ids.extend(event.ids)
            elif isinstance(event, Heartbeat):
                logger.debug("Heartbeat: log size %d", event.log_size)

        if not failed:
            self._consecutive_errors = 0

        records = self._process(self.engine, ids) if ids else []
        for record in records:
            self.stats.records_dispatched += self.dispatcher.dispatch(record)

        self._maybe_purge()
        return records

    def _notify(self, event: ChangeEvent) -> None:
        self.stats.last_event_at = self._clock()
        if self._on_event:
            self._on_event(format_event(event))

    def _observer_failed(self, event: ObserverError) -> None:
        self.stats.observer_errors += 1
        self._consecutive_errors += 1
        limit = self.config.source.max_consecutive_errors
        logger.error("Observer error (%d/%d): %s", self._consecutive_errors, limit, event.message)
        if self._consecutive_errors >= limit:
            logger.error("Observer failed %d consecutive ticks, draining", self._consecutive_errors)
            self.failed = True
            self._transition(TrackerState.DRAINING)

    def _process(self, engine: ClassifierEngine, ids: list[int]) -> list[DeletionRecord]:
        try:
            records = engine.process(ids)
        except Exception as e:
            self.stats.aborted_ticks += 1
            logger.error("Tick aborted, %d items left unprocessed: %s", len(ids), e)
            return []
        self.stats.items_processed += len(ids)
        self.stats.deletions_detected += len(records)
        return records

    # --- Retention ---

    def purge(self, now: datetime | None = None) -> tuple[int, int]:
        """Drop fingerprints and journal entries older than the retention horizon."""
        store = self._require_store()
        now = now or self._clock()
        cutoff = now - timedelta(days=self.config.state.retention_days)
        fps, recs = store.purge_older_than(cutoff)
        self._last_purge = now
        self.stats.purged_fingerprints += fps
        self.stats.purged_records += recs
        return fps, recs

    def _maybe_purge(self) -> None:
        hours = self.config.state.purge_interval_hours
        if hours <= 0 or self._last_purge is None:
            return
        now = self._clock()
        if now - self._last_purge >= timedelta(hours=hours):
            try:
                self.purge(now)
            except Exception as e:
                logger.error("Periodic purge failed: %s", e)

    # --- Diagnostics ---

    def deletions_between(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[DeletionRecord]:
        """Journal entries in range, newest first. Safe to call while the loop runs."""
        return self._require_store().query_deletions(start, end)
