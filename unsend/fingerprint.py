"""
Fingerprints and deletion records.

A fingerprint is a compact, comparable summary of one message at the moment
it was observed: a hash of its text, an ordered set of attachment metadata
hashes, and the retained text itself so a later deletion can be recovered.

A deletion record is the journal entry for one detected removal or edit.
Records are immutable once journaled.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_micros(ts: datetime) -> int:
    """Exact integer microseconds since the Unix epoch."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return (ts - EPOCH) // _MICROSECOND


def from_micros(value: int) -> datetime:
    return EPOCH + timedelta(microseconds=int(value))


def hash_content(text: str | None) -> str:
    """SHA-256 of the message text (missing text hashes as empty)."""
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


def hash_attachment(filename: str | None, size: int | None, modified: int | None) -> str:
    """
    Metadata fingerprint of an attachment.

    Hashes (filename, size, modified) only, never file bytes: two distinct
    files with identical metadata compare equal.
    """
    key = f"{filename or ''}:{size or 0}:{modified or 0}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class AttachmentMeta:
    filename: str | None
    size: int | None = None
    modified: int | None = None

    @property
    def hash(self) -> str:
        return hash_attachment(self.filename, self.size, self.modified)


@dataclass(frozen=True)
class MessageRow:
    """One row read from the monitored store."""

    id: int
    raw_content: str | None = None
    sender_identity: str | None = None
    conversation_id: int | None = None
    sent_at: datetime | None = None
    edited_at: datetime | None = None
    retracted_at: datetime | None = None
    has_attachments: bool = False
    attachments: tuple[AttachmentMeta, ...] = ()


@dataclass(frozen=True)
class Fingerprint:
    """Last-known state of one item."""

    item_id: int
    content_hash: str
    attachment_hashes: tuple[str, ...]
    timestamp: datetime
    conversation_id: int | None = None
    sender_identity: str | None = None
    content: str | None = None  # retained payload for recovery
    tombstone: bool = False  # item has vanished; kept so the vanish is not re-reported

    def as_tombstone(self, timestamp: datetime) -> Fingerprint:
        return replace(self, tombstone=True, timestamp=timestamp)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "item_id": self.item_id,
            "content_hash": self.content_hash,
            "attachment_hashes": list(self.attachment_hashes),
            "timestamp": self.timestamp.isoformat(),
            "conversation_id": self.conversation_id,
            "sender_identity": self.sender_identity,
            "content": self.content,
            "tombstone": self.tombstone,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Fingerprint:
        return cls(
            item_id=int(data["item_id"]),
            content_hash=data["content_hash"],
            attachment_hashes=tuple(data.get("attachment_hashes", [])),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            conversation_id=data.get("conversation_id"),
            sender_identity=data.get("sender_identity"),
            content=data.get("content"),
            tombstone=bool(data.get("tombstone", False)),
        )


@dataclass(frozen=True)
class DeletionRecord:
    """A single detected deletion.

    journal_id is None until the record has been appended to the journal.
    """

    item_id: int
    origin_fingerprint: Fingerprint
    deletion_timestamp: datetime
    classification: str
    recovered_content: str | None = None
    recovered_attachments: tuple[str, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)
    journal_id: int | None = None

    def with_journal_id(self, journal_id: int) -> DeletionRecord:
        return replace(self, journal_id=journal_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "journal_id": self.journal_id,
            "item_id": self.item_id,
            "classification": self.classification,
            "deletion_timestamp": self.deletion_timestamp.isoformat(),
            "recovered_content": self.recovered_content,
            "recovered_attachments": list(self.recovered_attachments),
            "origin_fingerprint": self.origin_fingerprint.to_dict(),
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeletionRecord:
        return cls(
            journal_id=data.get("journal_id"),
            item_id=int(data["item_id"]),
            classification=data["classification"],
            deletion_timestamp=datetime.fromisoformat(data["deletion_timestamp"]),
            recovered_content=data.get("recovered_content"),
            recovered_attachments=tuple(data.get("recovered_attachments", [])),
            origin_fingerprint=Fingerprint.from_dict(data["origin_fingerprint"]),
            details=data.get("details", {}),
        )


def fingerprint_from_row(row: MessageRow, observed_at: datetime) -> Fingerprint | None:
    """
    Compute the live fingerprint of a row.

    A retracted row has no current fingerprint: from the reader's point of
    view the message is gone.
    """
    if row.retracted_at is not None:
        return None

    # Ordered set: first occurrence wins
    attachment_hashes = tuple(dict.fromkeys(a.hash for a in row.attachments))

    return Fingerprint(
        item_id=row.id,
        content_hash=hash_content(row.raw_content),
        attachment_hashes=attachment_hashes,
        timestamp=observed_at,
        conversation_id=row.conversation_id,
        sender_identity=row.sender_identity,
        content=row.raw_content,
    )
