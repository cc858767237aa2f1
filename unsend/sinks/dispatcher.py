"""
Sequential, best-effort delivery of records to the configured sinks.

Every sink call is isolated: a failure is logged against that sink and the
remaining sinks still run. Delivery is at-most-once; nothing is retried
except finalize, which gets a bounded number of attempts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from ..fingerprint import DeletionRecord
from .base import Sink

logger = logging.getLogger(__name__)

FINALIZE_ATTEMPTS = 2


@dataclass
class SinkStatus:
    sink: Sink
    active: bool = False
    delivered: int = 0
    failures: int = 0
    errors: list[str] = field(default_factory=list)


class SinkDispatcher:
    def __init__(self, sinks: Sequence[Sink]):
        self._statuses = [SinkStatus(sink=s) for s in sinks]

    @property
    def active_sinks(self) -> list[Sink]:
        return [s.sink for s in self._statuses if s.active]

    @property
    def statuses(self) -> list[SinkStatus]:
        return list(self._statuses)

    def initialize_all(self) -> list[Sink]:
        """Initialize each sink; failed ones are excluded from the run.

        Returns:
            The sinks that initialized successfully
        """
        for status in self._statuses:
            try:
                status.sink.initialize()
            except Exception as e:
                status.errors.append(f"initialize: {e}")
                logger.warning("Sink %s failed to initialize, excluded: %s", status.sink.name, e)
                continue
            status.active = True
            logger.info("Sink %s ready", status.sink.name)
        return self.active_sinks

    def dispatch(self, record: DeletionRecord) -> int:
        """Hand a record to every active sink in order.

        Returns:
            Number of sinks that accepted it
        """
        accepted = 0
        for status in self._statuses:
            if not status.active:
                continue
            try:
                status.sink.deliver(record)
            except Exception as e:
                status.failures += 1
                status.errors.append(f"deliver #{record.journal_id}: {e}")
                logger.warning("Sink %s failed to deliver record %s: %s", status.sink.name, record.journal_id, e)
                continue
            status.delivered += 1
            accepted += 1
        return accepted

    def finalize_all(self) -> None:
        """Finalize every active sink; failures are logged, never raised."""
        for status in self._statuses:
            if not status.active:
                continue
            for attempt in range(1, FINALIZE_ATTEMPTS + 1):
                try:
                    status.sink.finalize()
                    break
                except Exception as e:
                    status.errors.append(f"finalize: {e}")
                    logger.warning(
                        "Sink %s finalize attempt %d/%d failed: %s",
                        status.sink.name, attempt, FINALIZE_ATTEMPTS, e,
                    )
            status.active = False
