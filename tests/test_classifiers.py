"""Tests for the deletion classifiers and the classifier engine."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from unsend.classifiers import (
    AttachmentOnlyClassifier,
    Classifier,
    ClassifierContext,
    ClassifierEngine,
    FullMessageClassifier,
    PartialEditClassifier,
    active_classifiers,
    removed_segments,
)
from unsend.config import DeletionType, DetectionConfig, FilterConfig
from unsend.fingerprint import Fingerprint, hash_content
from unsend.store import FingerprintStore

BASE_TIME = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
ALL_TYPES = tuple(DeletionType)


def _fp(text: str | None = "A", attachments: tuple[str, ...] = (), item_id: int = 1, **kwargs) -> Fingerprint:
    return Fingerprint(
        item_id=item_id,
        content_hash=hash_content(text),
        attachment_hashes=attachments,
        timestamp=BASE_TIME,
        conversation_id=kwargs.get("conversation_id", 1),
        sender_identity=kwargs.get("sender_identity", "+15550001111"),
        content=text,
        tombstone=kwargs.get("tombstone", False),
    )


def _engine(store: FingerprintStore, reader, **detection) -> ClassifierEngine:
    detection.setdefault("types", ALL_TYPES)
    return ClassifierEngine(store, reader, DetectionConfig(**detection), clock=lambda: BASE_TIME)


@pytest.fixture
def store(tmp_path: Path):
    s = FingerprintStore(tmp_path / "state.db")
    yield s
    s.close()


# --- Engine classification (priority and gating) ---


def test_vanished_item_fires_full_message_not_attachment(store, reader) -> None:
    engine = _engine(store, reader)
    previous = _fp("A", ("x", "y"))

    classifier, result = engine.classify(1, previous, None)

    assert classifier.name == "full-message"
    assert result.type is DeletionType.FULL_MESSAGE
    assert result.recovered_content == "A"
    assert result.recovered_attachments == ("x", "y")


def test_lost_attachment_fires_attachment_only(store, reader) -> None:
    engine = _engine(store, reader)

    classifier, result = engine.classify(1, _fp("A", ("x", "y")), _fp("A", ("x",)))

    assert result.type is DeletionType.ATTACHMENT_ONLY
    assert result.recovered_attachments == ("y",)
    assert classifier.name == "attachment-only"


def test_edit_ignored_when_tracking_disabled(store, reader) -> None:
    engine = _engine(store, reader, track_edits=False)
    assert engine.classify(1, _fp("A"), _fp("B")) is None


def test_edit_reported_when_tracking_enabled(store, reader) -> None:
    engine = _engine(store, reader, track_edits=True)

    _, result = engine.classify(1, _fp("hello world"), _fp("hello"))

    assert result.type is DeletionType.PARTIAL_EDIT
    assert result.recovered_content is None
    assert "removed_segments" not in result.details


def test_edit_recovery_reports_removed_text(store, reader) -> None:
    engine = _engine(store, reader, track_edits=True, recover_edit_content=True)

    _, result = engine.classify(1, _fp("meet me at noon"), _fp("meet me"))

    assert result.recovered_content == "meet me at noon"
    assert result.details["removed_segments"] == [" at noon"]


def test_no_previous_means_no_detection(store, reader) -> None:
    engine = _engine(store, reader, track_edits=True)
    assert engine.classify(1, None, _fp("A")) is None
    assert engine.classify(1, None, None) is None


def test_tombstone_previous_never_fires_again(store, reader) -> None:
    engine = _engine(store, reader, track_edits=True)
    assert engine.classify(1, _fp("A", tombstone=True), None) is None


def test_blanked_content_counts_as_full_message(store, reader) -> None:
    engine = _engine(store, reader, track_edits=True)

    _, result = engine.classify(1, _fp("secret"), _fp(""))

    assert result.type is DeletionType.FULL_MESSAGE
    assert result.details["reason"] == "content_replaced"
    assert result.recovered_content == "secret"


def test_full_replacement_never_leaves_edits_to_partial(store, reader) -> None:
    engine = _engine(store, reader, track_edits=True, full_replacement="never")
    _, result = engine.classify(1, _fp("secret"), _fp(""))
    assert result.type is DeletionType.PARTIAL_EDIT


def test_full_replacement_any(store, reader) -> None:
    engine = _engine(store, reader, full_replacement="any")
    _, result = engine.classify(1, _fp("A"), _fp("B"))
    assert result.type is DeletionType.FULL_MESSAGE


def test_disabled_type_removes_classifier() -> None:
    active = active_classifiers((DeletionType.ATTACHMENT_ONLY,))
    assert [c.name for c in active] == ["attachment-only"]

    # Even a vanished item produces nothing once full-message is disabled
    context = ClassifierContext(detection=DetectionConfig(types=(DeletionType.ATTACHMENT_ONLY,)))
    assert all(c.detect(1, _fp("A", ("x",)), None, context) is None for c in active)


def test_active_classifiers_sorted_by_priority() -> None:
    pool = [PartialEditClassifier(), AttachmentOnlyClassifier(), FullMessageClassifier()]
    assert [c.name for c in active_classifiers(ALL_TYPES, pool)] == ["full-message", "attachment-only", "partial-edit"]


class _Exploding(Classifier):
    name = "exploding"
    priority = 0
    supported_types = frozenset({DeletionType.FULL_MESSAGE})

    def detect(self, item_id, previous, current, context):
        raise RuntimeError("boom")


def test_failing_classifier_is_skipped(store, reader) -> None:
    engine = ClassifierEngine(
        store,
        reader,
        DetectionConfig(types=ALL_TYPES),
        classifiers=[_Exploding(), FullMessageClassifier()],
    )

    classifier, result = engine.classify(1, _fp("A"), None)

    assert classifier.name == "full-message"
    assert result.type is DeletionType.FULL_MESSAGE


def test_removed_segments() -> None:
    assert removed_segments("abcdef", "abef") == ["cd"]
    assert removed_segments("same", "same") == []


# --- Engine process (persist) ---


def test_process_stores_baseline_for_new_items(store, reader) -> None:
    reader.add(1, "hello")
    engine = _engine(store, reader)

    assert engine.process([1]) == []
    assert store.get_fingerprint(1).content == "hello"


def test_process_journals_vanish_and_writes_tombstone(store, reader) -> None:
    reader.add(7, "hello")
    engine = _engine(store, reader)
    engine.process([7])

    reader.delete(7)
    (record,) = engine.process([7])

    assert record.journal_id is not None
    assert record.item_id == 7
    assert record.classification == "full_message"
    assert record.recovered_content == "hello"
    assert record.details == {"classifier": "full-message", "reason": "vanished"}
    assert store.get_fingerprint(7).tombstone is True

    # The same disappearance is not reported twice
    assert engine.process([7]) == []


def test_retracted_item_counts_as_vanished(store, reader) -> None:
    reader.add(3, "oops")
    engine = _engine(store, reader)
    engine.process([3])

    reader.retract(3)
    (record,) = engine.process([3])
    assert record.recovered_content == "oops"


def test_process_updates_baseline_after_attachment_loss(store, reader) -> None:
    reader.add(2, "pics", attachments=["a.jpg", "b.jpg"])
    engine = _engine(store, reader)
    engine.process([2])

    reader.drop_attachment(2, "b.jpg")
    (record,) = engine.process([2])

    assert record.classification == "attachment_only"
    assert len(record.recovered_attachments) == 1
    assert len(store.get_fingerprint(2).attachment_hashes) == 1
    assert engine.process([2]) == []


def test_filters_exclude_untracked_senders(store, reader) -> None:
    reader.add(1, "hi", sender="+15550001111")
    reader.add(2, "hi", sender="boss@example.com")
    engine = ClassifierEngine(
        store,
        reader,
        DetectionConfig(types=ALL_TYPES),
        filters=FilterConfig(senders=("example.com",)),
    )

    engine.process([1, 2])

    assert store.get_fingerprint(1) is None
    assert store.get_fingerprint(2) is not None


def test_process_failure_commits_nothing(store, reader) -> None:
    reader.add(7, "hello")
    engine = _engine(store, reader)
    engine.process([7])
    reader.delete(7)

    reader.fail_with = OSError("database is locked")
    with pytest.raises(OSError):
        engine.process([7])

    reader.fail_with = None
    assert store.query_deletions() == []
    assert store.get_fingerprint(7).tombstone is False
