"""
Persistent tracker state.

Two durable structures live in the tracker's own SQLite database, distinct
from the monitored store:

- fingerprints: latest fingerprint per item id (last write wins)
- deletion_journal: append-only deletion records with an AUTOINCREMENT id,
  so journal ids are strictly increasing and never reused, even after a
  purge or a restart

INVARIANT: journal rows are never updated. The only operations touching
existing journal rows are reads and the retention purge.

Writes go through one connection guarded by a lock (single writer).
Diagnostic reads open their own connection; with WAL journaling they do
not block the writer.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import closing, contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Sequence

from .fingerprint import DeletionRecord, Fingerprint, from_micros, to_micros

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS fingerprints (
    item_id INTEGER PRIMARY KEY,
    content_hash TEXT NOT NULL,
    attachment_hashes TEXT NOT NULL,   -- JSON array, ordered
    ts_us INTEGER NOT NULL,
    conversation_id INTEGER,
    sender_identity TEXT,
    content TEXT,
    tombstone INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS deletion_journal (
    journal_id INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id INTEGER NOT NULL,
    origin_fingerprint TEXT NOT NULL,  -- JSON
    deletion_ts_us INTEGER NOT NULL,
    classification TEXT NOT NULL,
    recovered_content TEXT,
    recovered_attachments TEXT NOT NULL,  -- JSON array
    details TEXT NOT NULL                 -- JSON object
);

CREATE INDEX IF NOT EXISTS idx_fingerprints_ts ON fingerprints(ts_us);
CREATE INDEX IF NOT EXISTS idx_fingerprints_conversation ON fingerprints(conversation_id);
CREATE INDEX IF NOT EXISTS idx_journal_ts ON deletion_journal(deletion_ts_us);
"""

_FP_COLUMNS = (
    "item_id, content_hash, attachment_hashes, ts_us, conversation_id, sender_identity, content, tombstone"
)
_JOURNAL_COLUMNS = (
    "journal_id, item_id, origin_fingerprint, deletion_ts_us, classification, "
    "recovered_content, recovered_attachments, details"
)


def _fp_params(fp: Fingerprint) -> tuple:
    return (
        fp.item_id,
        fp.content_hash,
        json.dumps(list(fp.attachment_hashes)),
        to_micros(fp.timestamp),
        fp.conversation_id,
        fp.sender_identity,
        fp.content,
        1 if fp.tombstone else 0,
    )


def _row_to_fingerprint(row: tuple) -> Fingerprint:
    item_id, content_hash, attachments, ts_us, conversation_id, sender, content, tombstone = row
    return Fingerprint(
        item_id=int(item_id),
        content_hash=content_hash,
        attachment_hashes=tuple(json.loads(attachments)),
        timestamp=from_micros(ts_us),
        conversation_id=conversation_id,
        sender_identity=sender,
        content=content,
        tombstone=bool(tombstone),
    )


def _fingerprint_json(fp: Fingerprint) -> str:
    data = fp.to_dict()
    # Exact timestamp; isoformat alone is only as precise as the datetime
    data["ts_us"] = to_micros(fp.timestamp)
    return json.dumps(data, separators=(",", ":"))


def _fingerprint_from_json(text: str) -> Fingerprint:
    data = json.loads(text)
    fp = Fingerprint.from_dict(data)
    if "ts_us" in data:
        fp = replace(fp, timestamp=from_micros(data["ts_us"]))
    return fp


def _row_to_record(row: tuple) -> DeletionRecord:
    journal_id, item_id, origin, deletion_ts, classification, content, attachments, details = row
    return DeletionRecord(
        journal_id=int(journal_id),
        item_id=int(item_id),
        origin_fingerprint=_fingerprint_from_json(origin),
        deletion_timestamp=from_micros(deletion_ts),
        classification=classification,
        recovered_content=content,
        recovered_attachments=tuple(json.loads(attachments)),
        details=json.loads(details),
    )


class FingerprintStore:
    """
    Latest-fingerprint table plus append-only deletion journal.

    Usage:
        store = FingerprintStore(Path("state.db"))
        store.put_fingerprint(fp)
        journal_id = store.append_deletion(record)
        store.close()
    """

    def __init__(self, db_path: Path):
        """
        Open (creating if needed) the state database.

        Raises:
            RuntimeError: if the database cannot be opened or initialized
        """
        self.db_path = db_path
        self._lock = threading.Lock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False, isolation_level=None)
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.executescript(SCHEMA)
        except (OSError, sqlite3.Error) as e:
            raise RuntimeError(f"Cannot open state database {self.db_path}: {e}") from e

        logger.debug("Opened state database %s", self.db_path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> FingerprintStore:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # --- Transactions ---

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized write transaction; rolls back on any exception."""
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")

    def _reader(self) -> sqlite3.Connection:
        """Independent read connection for diagnostic queries."""
        return sqlite3.connect(str(self.db_path))

    # --- Fingerprints ---

    def get_fingerprint(self, item_id: int) -> Fingerprint | None:
        """Last value stored for item_id, or None."""
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_FP_COLUMNS} FROM fingerprints WHERE item_id = ?", (item_id,)
            ).fetchone()
        return _row_to_fingerprint(row) if row else None

    def put_fingerprint(self, fp: Fingerprint) -> None:
        """Upsert keyed by item id; the new value fully replaces the old one."""
        self.batch_put_fingerprints([fp])

    def batch_put_fingerprints(self, fingerprints: Sequence[Fingerprint]) -> None:
        """Upsert many fingerprints: either all land or none do."""
        if not fingerprints:
            return
        with self._transaction() as conn:
            self._upsert(conn, fingerprints)
        logger.debug("Stored %d fingerprints", len(fingerprints))

    def _upsert(self, conn: sqlite3.Connection, fingerprints: Sequence[Fingerprint]) -> None:
        conn.executemany(
            f"INSERT OR REPLACE INTO fingerprints ({_FP_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            [_fp_params(fp) for fp in fingerprints],
        )

    def tracked_ids(self) -> list[int]:
        """Ids with a live (non-tombstone) baseline."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT item_id FROM fingerprints WHERE tombstone = 0 ORDER BY item_id"
            ).fetchall()
        return [int(r[0]) for r in rows]

    # --- Journal ---

    def append_deletion(self, record: DeletionRecord) -> int:
        """Append a record and return its newly assigned journal id."""
        with self._transaction() as conn:
            return self._insert_record(conn, record)

    def _insert_record(self, conn: sqlite3.Connection, record: DeletionRecord) -> int:
        if record.journal_id is not None:
            raise ValueError(f"Record for item {record.item_id} already journaled as {record.journal_id}")
        cursor = conn.execute(
            f"""
            INSERT INTO deletion_journal ({_JOURNAL_COLUMNS})
            VALUES (NULL, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.item_id,
                _fingerprint_json(record.origin_fingerprint),
                to_micros(record.deletion_timestamp),
                record.classification,
                record.recovered_content,
                json.dumps(list(record.recovered_attachments)),
                json.dumps(record.details, sort_keys=True, default=str),
            ),
        )
        return int(cursor.lastrowid)

    def commit_batch(
        self,
        records: Sequence[DeletionRecord],
        baselines: Sequence[Fingerprint],
    ) -> list[DeletionRecord]:
        """
        Journal a batch of detections and store the new baselines atomically.

        Returns the records with their assigned journal ids, in input order.
        On failure nothing from the batch is applied.
        """
        with self._transaction() as conn:
            journaled = [r.with_journal_id(self._insert_record(conn, r)) for r in records]
            self._upsert(conn, baselines)
        for r in journaled:
            logger.info("Journaled deletion %d (%s) for item %d", r.journal_id, r.classification, r.item_id)
        return journaled

    def query_deletions(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[DeletionRecord]:
        """Journal entries with start <= deletion_timestamp <= end, newest first."""
        where = []
        params: list[Any] = []
        if start is not None:
            where.append("deletion_ts_us >= ?")
            params.append(to_micros(start))
        if end is not None:
            where.append("deletion_ts_us <= ?")
            params.append(to_micros(end))

        sql = f"SELECT {_JOURNAL_COLUMNS} FROM deletion_journal"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY deletion_ts_us DESC, journal_id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        with closing(self._reader()) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_record(r) for r in rows]

    # --- Retention ---

    def purge_older_than(self, cutoff: datetime) -> tuple[int, int]:
        """
        Hard-delete fingerprints and journal entries with timestamp < cutoff.

        Irreversible. Entries at or after the cutoff survive.

        Returns:
            (fingerprints_deleted, journal_entries_deleted)
        """
        cutoff_us = to_micros(cutoff)
        with self._transaction() as conn:
            fps = conn.execute("DELETE FROM fingerprints WHERE ts_us < ?", (cutoff_us,)).rowcount
            recs = conn.execute(
                "DELETE FROM deletion_journal WHERE deletion_ts_us < ?", (cutoff_us,)
            ).rowcount
        if fps or recs:
            logger.info("Purged %d fingerprints and %d journal entries older than %s", fps, recs, cutoff.isoformat())
        return int(fps or 0), int(recs or 0)

    # --- Summary ---

    def summary(self) -> dict[str, Any]:
        """Statistics about tracked items and the journal."""
        with closing(self._reader()) as conn:
            tracked, tombstones = conn.execute(
                "SELECT COALESCE(SUM(tombstone = 0), 0), COALESCE(SUM(tombstone = 1), 0) FROM fingerprints"
            ).fetchone()
            total, earliest, latest, last_id = conn.execute(
                "SELECT COUNT(*), MIN(deletion_ts_us), MAX(deletion_ts_us), MAX(journal_id) FROM deletion_journal"
            ).fetchone()
            by_type = conn.execute(
                "SELECT classification, COUNT(*) FROM deletion_journal GROUP BY classification ORDER BY 2 DESC"
            ).fetchall()
            rows = conn.execute("SELECT origin_fingerprint FROM deletion_journal").fetchall()

        conversation_counts: dict[str, int] = {}
        for (origin,) in rows:
            conv = json.loads(origin).get("conversation_id")
            key = str(conv) if conv is not None else "unknown"
            conversation_counts[key] = conversation_counts.get(key, 0) + 1
        most_affected = sorted(conversation_counts.items(), key=lambda x: -x[1])[:10]

        return {
            "tracked_items": int(tracked),
            "vanished_items": int(tombstones),
            "total_deletions": int(total),
            "last_journal_id": last_id,
            "classification_counts": {c: int(n) for c, n in by_type},
            "most_affected_conversations": most_affected,
            "time_range": {
                "earliest": from_micros(earliest).isoformat() if earliest is not None else None,
                "latest": from_micros(latest).isoformat() if latest is not None else None,
            },
        }
