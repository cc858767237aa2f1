"""
Read-only access to the monitored message store.

The tracker never writes to the monitored database. Every query opens a
short-lived read-only connection so each poll sees a fresh snapshot, and
the file being briefly absent or locked never leaves a stale handle behind.

Schema assumptions (chat database):
  message(ROWID, text, handle_id, date, date_edited, date_retracted,
          is_from_me, cache_has_attachments)
  handle(ROWID, id)
  chat_message_join(chat_id, message_id)
  message_attachment_join(message_id, attachment_id)
  attachment(ROWID, filename, total_bytes, created_date)

Dates are stored relative to 2001-01-01 UTC, in nanoseconds on current
systems and in seconds on older ones.
"""

from __future__ import annotations

import sqlite3
from collections import defaultdict
from contextlib import closing
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Iterator, Protocol, Sequence, runtime_checkable

from .fingerprint import AttachmentMeta, Fingerprint, MessageRow, fingerprint_from_row, utcnow

APPLE_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)
_NANOSECOND_THRESHOLD = 10**11  # larger raw values are nanoseconds
_CHUNK = 500  # stay well below SQLite's bound-parameter limit

SELF_IDENTITY = "me"


def apple_to_datetime(value: int | None) -> datetime | None:
    if not value:
        return None
    if abs(value) >= _NANOSECOND_THRESHOLD:
        return APPLE_EPOCH + timedelta(microseconds=value // 1000)
    return APPLE_EPOCH + timedelta(seconds=value)


def datetime_to_apple(ts: datetime) -> int:
    """Nanoseconds since 2001-01-01 UTC."""
    delta = ts - APPLE_EPOCH
    return (delta // timedelta(microseconds=1)) * 1000


def _chunks(ids: Sequence[int], size: int = _CHUNK) -> Iterator[Sequence[int]]:
    for i in range(0, len(ids), size):
        yield ids[i : i + size]


@runtime_checkable
class MessageStoreReader(Protocol):
    """
    Read-only accessor to the monitored store.

    Implementations own the computation of live fingerprints; the tracker
    keeps its own history and never asks the reader for past state.
    """

    def log_size(self) -> int | None:
        """Cheap change signal; None when the store is transiently unreadable."""
        ...

    def get_changed_since(self, since: datetime | None, limit: int | None) -> list[MessageRow]:
        """Rows sent, edited or retracted after ``since`` (all rows if None), newest first.

        ``limit`` of None returns every matching row.
        """
        ...

    def get_by_ids(self, ids: Sequence[int]) -> list[MessageRow]:
        ...

    def existing(self, ids: Sequence[int]) -> set[int]:
        ...

    def resolve_fingerprints(self, ids: Sequence[int]) -> dict[int, Fingerprint]:
        """Live fingerprint per id that still exists and is not retracted."""
        ...


class SqliteMessageStore:
    """MessageStoreReader over a SQLite chat database."""

    _MESSAGE_COLUMNS = """
        m.ROWID, m.text, m.handle_id, h.id, m.date, m.date_edited, m.date_retracted,
        m.is_from_me, m.cache_has_attachments, cmj.chat_id
    """

    _MESSAGE_FROM = """
        FROM message m
        LEFT JOIN handle h ON h.ROWID = m.handle_id
        LEFT JOIN chat_message_join cmj ON cmj.message_id = m.ROWID
    """

    def __init__(self, db_path: Path, clock=utcnow):
        self.db_path = db_path.expanduser()
        self._clock = clock

    @property
    def wal_path(self) -> Path:
        return self.db_path.with_name(self.db_path.name + "-wal")

    def _connect(self) -> sqlite3.Connection:
        uri = self.db_path.resolve().as_uri() + "?mode=ro"
        return sqlite3.connect(uri, uri=True)

    def log_size(self) -> int | None:
        """
        Size of the write-ahead log, falling back to the database file size
        when the store runs without one. None when neither file is present.
        """
        for path in (self.wal_path, self.db_path):
            try:
                return path.stat().st_size
            except FileNotFoundError:
                continue
        return None

    def _row_to_message(self, row: tuple, attachments: dict[int, list[AttachmentMeta]]) -> MessageRow:
        rowid, text, _handle_id, handle_identifier, date, date_edited, date_retracted, is_from_me, has_att, chat_id = row
        sender = SELF_IDENTITY if is_from_me else handle_identifier
        return MessageRow(
            id=int(rowid),
            raw_content=text,
            sender_identity=sender,
            conversation_id=chat_id,
            sent_at=apple_to_datetime(date),
            edited_at=apple_to_datetime(date_edited),
            retracted_at=apple_to_datetime(date_retracted),
            has_attachments=bool(has_att),
            attachments=tuple(attachments.get(int(rowid), ())),
        )

    def _load_attachments(self, conn: sqlite3.Connection, ids: Sequence[int]) -> dict[int, list[AttachmentMeta]]:
        found: dict[int, list[AttachmentMeta]] = defaultdict(list)
        for chunk in _chunks(list(ids)):
            placeholders = ",".join("?" for _ in chunk)
            cursor = conn.execute(
                f"""
                SELECT maj.message_id, a.filename, a.total_bytes, a.created_date
                FROM message_attachment_join maj
                JOIN attachment a ON a.ROWID = maj.attachment_id
                WHERE maj.message_id IN ({placeholders})
                ORDER BY maj.message_id, a.ROWID
                """,
                tuple(chunk),
            )
            for message_id, filename, total_bytes, created in cursor:
                found[int(message_id)].append(
                    AttachmentMeta(filename=filename, size=total_bytes, modified=created)
                )
        return found

    def _query_messages(self, conn: sqlite3.Connection, where: str, params: tuple, suffix: str = "") -> list[MessageRow]:
        rows = conn.execute(
            f"SELECT {self._MESSAGE_COLUMNS} {self._MESSAGE_FROM} WHERE {where} {suffix}",
            params,
        ).fetchall()
        # A message joined to several chats appears once, under its first chat
        unique: dict[int, tuple] = {}
        for r in rows:
            unique.setdefault(int(r[0]), r)
        attachments = self._load_attachments(conn, [i for i, r in unique.items() if r[8]])
        return [self._row_to_message(r, attachments) for r in unique.values()]

    def get_changed_since(self, since: datetime | None, limit: int | None) -> list[MessageRow]:
        suffix = "ORDER BY m.ROWID DESC" if limit is None else f"ORDER BY m.ROWID DESC LIMIT {int(limit)}"
        with closing(self._connect()) as conn:
            if since is None:
                return self._query_messages(conn, "1 = 1", (), suffix)
            marker = datetime_to_apple(since)
            return self._query_messages(
                conn,
                "(m.date > ? OR m.date_edited > ? OR m.date_retracted > ?)",
                (marker, marker, marker),
                suffix,
            )

    def get_by_ids(self, ids: Sequence[int]) -> list[MessageRow]:
        if not ids:
            return []
        rows: list[MessageRow] = []
        with closing(self._connect()) as conn:
            for chunk in _chunks(list(ids)):
                placeholders = ",".join("?" for _ in chunk)
                rows.extend(self._query_messages(conn, f"m.ROWID IN ({placeholders})", tuple(chunk)))
        return rows

    def existing(self, ids: Sequence[int]) -> set[int]:
        if not ids:
            return set()
        found: set[int] = set()
        with closing(self._connect()) as conn:
            for chunk in _chunks(list(ids)):
                placeholders = ",".join("?" for _ in chunk)
                cursor = conn.execute(
                    f"SELECT ROWID FROM message WHERE ROWID IN ({placeholders})", tuple(chunk)
                )
                found.update(int(r[0]) for r in cursor)
        return found

    def resolve_fingerprints(self, ids: Sequence[int]) -> dict[int, Fingerprint]:
        return fingerprints_for(self.get_by_ids(ids), self._clock())


def fingerprints_for(rows: Iterable[MessageRow], observed_at: datetime) -> dict[int, Fingerprint]:
    """Resolve fingerprints for already-loaded rows, dropping retracted ones."""
    out: dict[int, Fingerprint] = {}
    for row in rows:
        fp = fingerprint_from_row(row, observed_at)
        if fp is not None:
            out[row.id] = fp
    return out
