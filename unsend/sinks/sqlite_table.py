"""Embedded-table sink: records copied into a table of a SQLite database."""

from __future__ import annotations

import json
import re
import sqlite3
from pathlib import Path
from typing import Any

from ..fingerprint import DeletionRecord
from .base import Sink

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SqliteTableSink(Sink):
    """
    Inserts each record into a table keyed by journal id.

    Re-delivering a record with a journal id already present is a no-op.

    Settings:
        path: Database file (default ./deletions.db)
        table: Table name (default deletions); letters, digits and underscores
    """

    type_name = "sqlite"

    def __init__(self, settings: dict[str, Any] | None = None):
        super().__init__(settings)
        self.path = Path(str(self.settings.get("path", "./deletions.db"))).expanduser()
        self.table = str(self.settings.get("table", "deletions"))
        if not _TABLE_NAME.match(self.table):
            raise ValueError(f"Invalid table name: {self.table!r}")
        self._conn: sqlite3.Connection | None = None

    def initialize(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.path))
        self._conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                journal_id INTEGER PRIMARY KEY,
                item_id INTEGER NOT NULL,
                classification TEXT NOT NULL,
                deletion_timestamp TEXT NOT NULL,
                conversation_id INTEGER,
                sender_identity TEXT,
                recovered_content TEXT,
                recovered_attachments TEXT NOT NULL,
                details TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    def deliver(self, record: DeletionRecord) -> None:
        if self._conn is None:
            raise RuntimeError(f"SQLite sink not initialized: {self.path}")
        origin = record.origin_fingerprint
        with self._conn:
            self._conn.execute(
                f"""
                INSERT OR IGNORE INTO {self.table}
                (journal_id, item_id, classification, deletion_timestamp, conversation_id,
                 sender_identity, recovered_content, recovered_attachments, details)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.journal_id,
                    record.item_id,
                    record.classification,
                    record.deletion_timestamp.isoformat(),
                    origin.conversation_id,
                    origin.sender_identity,
                    record.recovered_content,
                    json.dumps(list(record.recovered_attachments)),
                    json.dumps(record.details, sort_keys=True, default=str),
                ),
            )

    def finalize(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
