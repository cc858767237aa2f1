"""Tests for CLI command implementations."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from unsend.commands.config_cmd import run_config_init, run_config_show
from unsend.commands.journal_cmd import run_deletions, run_purge, run_summary
from unsend.commands.run_cmd import run_tracker
from unsend.config import TrackerConfig, load_config
from unsend.fingerprint import DeletionRecord, Fingerprint, hash_content
from unsend.store import FingerprintStore
from unsend.tracker import DeletionTracker

BASE_TIME = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _record(item_id: int, ts: datetime, classification: str = "full_message") -> DeletionRecord:
    origin = Fingerprint(
        item_id=item_id,
        content_hash=hash_content("hi"),
        attachment_hashes=(),
        timestamp=ts,
        conversation_id=2,
        sender_identity="+15550001111",
        content="hi",
    )
    return DeletionRecord(
        item_id=item_id,
        origin_fingerprint=origin,
        deletion_timestamp=ts,
        classification=classification,
        recovered_content="hi",
    )


@pytest.fixture
def state_db(tmp_path: Path) -> Path:
    path = tmp_path / "state.db"
    with FingerprintStore(path) as store:
        store.append_deletion(_record(1, BASE_TIME - timedelta(days=60)))
        store.append_deletion(_record(2, BASE_TIME - timedelta(days=1), "attachment_only"))
        store.append_deletion(_record(3, BASE_TIME))
    return path


def test_deletions_json_newest_first(state_db: Path, capsys) -> None:
    shown = run_deletions(state_db, output_json=True)

    assert shown == 3
    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.strip()]
    assert [r["item_id"] for r in lines] == [3, 2, 1]


def test_deletions_time_range_and_limit(state_db: Path) -> None:
    assert run_deletions(state_db, since=BASE_TIME - timedelta(days=2)) == 2
    assert run_deletions(state_db, last_n=1) == 1
    assert run_deletions(state_db, until=BASE_TIME - timedelta(days=30)) == 1


def test_deletions_missing_state_db(tmp_path: Path, capsys) -> None:
    assert run_deletions(tmp_path / "nope.db") == 0
    assert "No state database" in capsys.readouterr().out
    assert not (tmp_path / "nope.db").exists()


def test_summary(state_db: Path, capsys) -> None:
    assert run_summary(state_db) == 3
    out = capsys.readouterr().out
    assert "Deletion Summary" in out
    assert "attachment_only" in out


def test_purge_removes_old_entries(state_db: Path, capsys) -> None:
    assert run_purge(state_db, 30, now=BASE_TIME) == 0
    assert "1" in capsys.readouterr().out

    with FingerprintStore(state_db) as store:
        assert [r.item_id for r in store.query_deletions()] == [3, 2]


def test_purge_rejects_zero_days(state_db: Path) -> None:
    with pytest.raises(ValueError):
        run_purge(state_db, 0)


def test_config_init_writes_loadable_yaml(tmp_path: Path, capsys) -> None:
    path = tmp_path / "unsend.yml"

    assert run_config_init(path) == 0
    assert load_config(path).detection == TrackerConfig().detection

    # Refuses to overwrite without force
    assert run_config_init(path) == 1
    assert run_config_init(path, force=True) == 0


def test_config_init_rejects_non_yaml(tmp_path: Path) -> None:
    assert run_config_init(tmp_path / "unsend.toml") == 1


def test_config_show(capsys) -> None:
    assert run_config_show(TrackerConfig()) == 0
    out = capsys.readouterr().out
    assert "poll_interval_ms: 1000" in out
    assert "full_message" in out


def test_run_tracker_returns_zero_after_max_ticks(tracker_config, reader, clock, capsys) -> None:
    reader.add(1, "hello")
    tracker = DeletionTracker(tracker_config, reader=reader, clock=clock)

    assert run_tracker(tracker_config, max_ticks=2, tracker=tracker) == 0
    assert "Stopped." in capsys.readouterr().err


def test_run_tracker_returns_one_on_observer_failure(tracker_config, reader, clock) -> None:
    reader.fail_with = RuntimeError("unreadable")
    reader.add(1, "x")
    tracker = DeletionTracker(tracker_config, reader=reader, clock=clock)

    assert run_tracker(tracker_config, tracker=tracker) == 1


def test_run_tracker_prints_events_without_markup_tags(tracker_config, chat_db, capsys) -> None:
    chat_db.add_message("hello")

    assert run_tracker(tracker_config, max_ticks=1, show_events=True) == 0
    err = capsys.readouterr().err
    assert "+ [items_added] 1 items: 1" in err
    assert "[dim]" not in err
