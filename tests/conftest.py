"""Pytest configuration and fixtures."""

from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Sequence

import pytest

from unsend.config import SinkConfig, SourceConfig, StateConfig, TrackerConfig
from unsend.fingerprint import AttachmentMeta, DeletionRecord, Fingerprint, MessageRow
from unsend.sinks import Sink
from unsend.source import datetime_to_apple, fingerprints_for

BASE_TIME = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; advance() moves it forward."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeReader:
    """In-memory MessageStoreReader. Every mutation grows the log size."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.rows: dict[int, MessageRow] = {}
        self.size: int | None = 0
        self.fail_with: Exception | None = None
        self.changed_calls: list[tuple[datetime | None, int | None]] = []

    def _touch(self) -> None:
        self.size = (self.size or 0) + 4096

    # --- mutations (test side) ---

    def add(self, item_id: int, text: str | None = "", attachments: Sequence[str] = (), **kwargs) -> MessageRow:
        row = MessageRow(
            id=item_id,
            raw_content=text,
            sender_identity=kwargs.pop("sender", "+15550001111"),
            conversation_id=kwargs.pop("conversation_id", 1),
            sent_at=self.clock(),
            has_attachments=bool(attachments),
            attachments=tuple(AttachmentMeta(filename=a, size=100, modified=1) for a in attachments),
            **kwargs,
        )
        self.rows[item_id] = row
        self._touch()
        return row

    def edit(self, item_id: int, text: str | None) -> None:
        self.rows[item_id] = replace(self.rows[item_id], raw_content=text, edited_at=self.clock())
        self._touch()

    def drop_attachment(self, item_id: int, filename: str) -> None:
        row = self.rows[item_id]
        kept = tuple(a for a in row.attachments if a.filename != filename)
        self.rows[item_id] = replace(row, attachments=kept, has_attachments=bool(kept), edited_at=self.clock())
        self._touch()

    def retract(self, item_id: int) -> None:
        self.rows[item_id] = replace(self.rows[item_id], retracted_at=self.clock())
        self._touch()

    def delete(self, item_id: int) -> None:
        del self.rows[item_id]
        self._touch()

    # --- MessageStoreReader ---

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def log_size(self) -> int | None:
        return self.size

    def get_changed_since(self, since: datetime | None, limit: int | None) -> list[MessageRow]:
        self._check()
        self.changed_calls.append((since, limit))
        rows = sorted(self.rows.values(), key=lambda r: -r.id)
        if since is not None:
            rows = [
                r
                for r in rows
                if any(ts is not None and ts > since for ts in (r.sent_at, r.edited_at, r.retracted_at))
            ]
        return rows if limit is None else rows[:limit]

    def get_by_ids(self, ids: Sequence[int]) -> list[MessageRow]:
        self._check()
        return [self.rows[i] for i in ids if i in self.rows]

    def existing(self, ids: Sequence[int]) -> set[int]:
        self._check()
        return {i for i in ids if i in self.rows}

    def resolve_fingerprints(self, ids: Sequence[int]) -> dict[int, Fingerprint]:
        return fingerprints_for(self.get_by_ids(ids), self.clock())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def reader(clock: FakeClock) -> FakeReader:
    return FakeReader(clock)


@pytest.fixture
def tracker_config(tmp_path: Path) -> TrackerConfig:
    """Config writing all state under tmp_path, with a single file sink."""
    return TrackerConfig(
        source=SourceConfig(db_path=tmp_path / "chat.db", poll_interval_ms=10, max_batch_size=100),
        state=StateConfig(db_path=tmp_path / "state.db", retention_days=30),
        sinks=(SinkConfig(type="file", settings={"path": str(tmp_path / "deletions.jsonl")}),),
    )


# -----------------------------------------------------------------------------
# Chat database builder
# -----------------------------------------------------------------------------

CHAT_SCHEMA = """
CREATE TABLE handle (ROWID INTEGER PRIMARY KEY AUTOINCREMENT, id TEXT NOT NULL);
CREATE TABLE chat (ROWID INTEGER PRIMARY KEY AUTOINCREMENT, chat_identifier TEXT);
CREATE TABLE message (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    text TEXT,
    handle_id INTEGER DEFAULT 0,
    date INTEGER,
    date_edited INTEGER DEFAULT 0,
    date_retracted INTEGER DEFAULT 0,
    is_from_me INTEGER DEFAULT 0,
    cache_has_attachments INTEGER DEFAULT 0
);
CREATE TABLE chat_message_join (chat_id INTEGER, message_id INTEGER);
CREATE TABLE attachment (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    filename TEXT,
    total_bytes INTEGER,
    created_date INTEGER
);
CREATE TABLE message_attachment_join (message_id INTEGER, attachment_id INTEGER);
"""


class ChatDb:
    """Writable chat database for exercising SqliteMessageStore."""

    def __init__(self, path: Path):
        self.path = path
        with self._conn() as conn:
            conn.executescript(CHAT_SCHEMA)

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.path))

    def add_handle(self, identifier: str) -> int:
        with self._conn() as conn:
            return conn.execute("INSERT INTO handle (id) VALUES (?)", (identifier,)).lastrowid

    def add_message(
        self,
        text: str | None,
        *,
        at: datetime = BASE_TIME,
        handle_id: int = 0,
        chat_id: int = 1,
        is_from_me: bool = False,
        attachments: Sequence[tuple[str, int, int]] = (),
    ) -> int:
        with self._conn() as conn:
            rowid = conn.execute(
                "INSERT INTO message (text, handle_id, date, is_from_me, cache_has_attachments) VALUES (?, ?, ?, ?, ?)",
                (text, handle_id, datetime_to_apple(at), int(is_from_me), int(bool(attachments))),
            ).lastrowid
            conn.execute("INSERT INTO chat_message_join (chat_id, message_id) VALUES (?, ?)", (chat_id, rowid))
            for filename, size, created in attachments:
                att = conn.execute(
                    "INSERT INTO attachment (filename, total_bytes, created_date) VALUES (?, ?, ?)",
                    (filename, size, created),
                ).lastrowid
                conn.execute(
                    "INSERT INTO message_attachment_join (message_id, attachment_id) VALUES (?, ?)", (rowid, att)
                )
        return rowid

    def edit(self, rowid: int, text: str, at: datetime) -> None:
        with self._conn() as conn:
            conn.execute(
                "UPDATE message SET text = ?, date_edited = ? WHERE ROWID = ?", (text, datetime_to_apple(at), rowid)
            )

    def retract(self, rowid: int, at: datetime) -> None:
        with self._conn() as conn:
            conn.execute("UPDATE message SET date_retracted = ? WHERE ROWID = ?", (datetime_to_apple(at), rowid))

    def delete(self, rowid: int) -> None:
        with self._conn() as conn:
            conn.execute("DELETE FROM message WHERE ROWID = ?", (rowid,))
            conn.execute("DELETE FROM chat_message_join WHERE message_id = ?", (rowid,))


@pytest.fixture
def chat_db(tmp_path: Path) -> ChatDb:
    return ChatDb(tmp_path / "chat.db")


# -----------------------------------------------------------------------------
# Sinks
# -----------------------------------------------------------------------------


class RecordingSink(Sink):
    """Sink that records calls and can be told to fail specific ones."""

    type_name = "recording"

    def __init__(self, fail_on: set[str] | None = None):
        super().__init__()
        self.fail_on = fail_on or set()
        self.calls: list[str] = []
        self.delivered: list[DeletionRecord] = []

    def _maybe_fail(self, call: str) -> None:
        self.calls.append(call)
        if call in self.fail_on:
            raise RuntimeError(f"{call} failed")

    def initialize(self) -> None:
        self._maybe_fail("initialize")

    def deliver(self, record: DeletionRecord) -> None:
        self._maybe_fail("deliver")
        self.delivered.append(record)

    def finalize(self) -> None:
        self._maybe_fail("finalize")


@pytest.fixture
def recording_sink():
    """Factory: recording_sink(fail_on={"deliver"})."""
    return RecordingSink
