"""Journal commands - list, summarize and purge recorded deletions."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..fingerprint import utcnow
from ..store import FingerprintStore


def _open_existing(state_db: Path, console: Console) -> FingerprintStore | None:
    if not state_db.exists():
        console.print(f"[dim]No state database at {state_db}.[/dim]")
        return None
    return FingerprintStore(state_db)


def run_deletions(
    state_db: Path,
    *,
    since: datetime | None = None,
    until: datetime | None = None,
    last_n: int | None = None,
    output_json: bool = False,
) -> int:
    """
    Display journal entries, newest first.

    Returns the number of entries displayed.
    """
    console = Console()
    store = _open_existing(state_db, console)
    if store is None:
        return 0
    with store:
        records = store.query_deletions(since, until, limit=last_n)

    if not records:
        console.print("[dim]No deletions recorded.[/dim]")
        return 0

    if output_json:
        for record in records:
            console.print(
                json.dumps(record.to_dict(), default=str), markup=False, highlight=False, emoji=False, soft_wrap=True
            )
        return len(records)

    table = Table(title=f"Deletions ({len(records)})")
    table.add_column("#", justify="right", style="dim")
    table.add_column("When")
    table.add_column("Type", style="bold")
    table.add_column("Item", justify="right")
    table.add_column("From")
    table.add_column("Chat", justify="right")
    table.add_column("Recovered")

    for r in records:
        origin = r.origin_fingerprint
        recovered = r.recovered_content or ""
        if len(recovered) > 60:
            recovered = recovered[:57] + "..."
        if r.recovered_attachments:
            recovered = f"{recovered} [{len(r.recovered_attachments)} attachments]".strip()
        table.add_row(
            str(r.journal_id),
            r.deletion_timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            r.classification,
            str(r.item_id),
            origin.sender_identity or "",
            str(origin.conversation_id) if origin.conversation_id is not None else "",
            recovered,
        )

    console.print(table)
    return len(records)


def run_summary(state_db: Path) -> int:
    """
    Display journal statistics.

    Returns the total deletion count.
    """
    console = Console()
    store = _open_existing(state_db, console)
    if store is None:
        return 0
    with store:
        summary = store.summary()

    table = Table(title="Deletion Summary")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Tracked items", str(summary["tracked_items"]))
    table.add_row("Vanished items", str(summary["vanished_items"]))
    table.add_row("Total deletions", str(summary["total_deletions"]))

    if summary["classification_counts"]:
        table.add_row("", "")
        for classification, count in summary["classification_counts"].items():
            table.add_row(f"  {classification}", str(count))

    if summary["most_affected_conversations"]:
        table.add_row("", "")
        for conversation, count in summary["most_affected_conversations"]:
            table.add_row(f"  chat {conversation}", str(count))

    time_range = summary["time_range"]
    if time_range["earliest"]:
        table.add_row("", "")
        table.add_row("First deletion", time_range["earliest"][:19].replace("T", " "))
        table.add_row("Last deletion", time_range["latest"][:19].replace("T", " "))

    console.print(table)
    return summary["total_deletions"]


def run_purge(state_db: Path, days: int, *, now: datetime | None = None) -> int:
    """
    Hard-delete state older than ``days``. Irreversible.

    Returns 0.
    """
    if days < 1:
        raise ValueError(f"days must be >= 1, got {days}")
    console = Console()
    store = _open_existing(state_db, console)
    if store is None:
        return 0
    cutoff = (now or utcnow()) - timedelta(days=days)
    with store:
        fps, recs = store.purge_older_than(cutoff)
    console.print(
        f"Purged [bold]{fps}[/bold] fingerprints and [bold]{recs}[/bold] journal entries "
        f"older than {cutoff.strftime('%Y-%m-%d %H:%M:%S')} UTC."
    )
    return 0
