"""JSON Lines file sink: one record per line, append-only."""

from __future__ import annotations

import json
from pathlib import Path
from typing import IO, Any

from ..fingerprint import DeletionRecord
from .base import Sink


class FileSink(Sink):
    """
    Appends each record to a .jsonl file.

    Settings:
        path: Output file (default ./deletions.jsonl)
    """

    type_name = "file"

    def __init__(self, settings: dict[str, Any] | None = None):
        super().__init__(settings)
        self.path = Path(str(self.settings.get("path", "./deletions.jsonl"))).expanduser()
        self._fh: IO[str] | None = None

    def initialize(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("a", encoding="utf-8")

    def deliver(self, record: DeletionRecord) -> None:
        if self._fh is None:
            raise RuntimeError(f"File sink not initialized: {self.path}")
        self._fh.write(json.dumps(record.to_dict(), separators=(",", ":"), default=str) + "\n")
        self._fh.flush()

    def finalize(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None


def read_records(path: Path) -> list[DeletionRecord]:
    """Read back every record written by a FileSink."""
    if not path.exists():
        return []
    records = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                records.append(DeletionRecord.from_dict(json.loads(line)))
    return records
