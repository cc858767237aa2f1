"""
Sink protocol.

A sink is a delivery target for journaled deletion records. Calls on one
sink are always sequential: initialize, then any number of deliver, then
finalize. A sink whose initialize fails is skipped for the rest of the run.

Failures are signalled by raising; the dispatcher isolates each call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ..fingerprint import DeletionRecord


class Sink(ABC):
    """Base class for deletion record sinks."""

    type_name: str = ""

    def __init__(self, settings: dict[str, Any] | None = None):
        self.settings = dict(settings or {})

    @property
    def name(self) -> str:
        return self.type_name or type(self).__name__

    def initialize(self) -> None:
        """Prepare the target. Raise to exclude this sink from the run."""

    @abstractmethod
    def deliver(self, record: DeletionRecord) -> None:
        """Deliver one record. Raise on failure."""
        ...

    def finalize(self) -> None:
        """Flush and release resources."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.settings!r}>"
