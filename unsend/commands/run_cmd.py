"""Run command - track deletions until interrupted."""

from __future__ import annotations

import signal
from typing import Any

from rich.console import Console

from ..config import TrackerConfig
from ..tracker import DeletionTracker


def run_tracker(
    config: TrackerConfig,
    *,
    max_ticks: int | None = None,
    show_events: bool = False,
    tracker: DeletionTracker | None = None,
) -> int:
    """
    Initialize and run the tracker.

    SIGINT and SIGTERM request a drain; the current tick completes first.

    Returns:
        0 on a requested stop, 1 if the observer failed repeatedly

    Raises:
        RuntimeError: if the tracker cannot be initialized
    """
    console = Console(stderr=True)

    def on_event(formatted: str) -> None:
        console.print(formatted, style="dim", highlight=False, markup=False)

    tracker = tracker or DeletionTracker(config, on_event=on_event if show_events else None)

    console.print(f"[bold]Tracking[/bold] {config.source.db_path}")
    console.print(f"  State: {config.state.db_path}")
    console.print(f"  Poll interval: {config.source.poll_interval_ms} ms")
    console.print(f"  Types: {', '.join(t.value for t in config.detection.types)}")
    console.print(f"  Retention: {config.state.retention_days} days")
    console.print()
    console.print("[dim]Press Ctrl+C to stop[/dim]")
    console.print()

    def on_signal(signum: int, _frame: Any) -> None:
        tracker.request_stop()

    previous = {sig: signal.signal(sig, on_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        tracker.initialize()
        stats = tracker.run(max_ticks=max_ticks)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    console.print()
    console.print(
        f"[bold]Stopped.[/bold] {stats.ticks} ticks, {stats.deletions_detected} deletions detected, "
        f"{stats.observer_errors} observer errors."
    )
    if tracker.failed:
        console.print("[red]Observer failed repeatedly; tracker drained.[/red]")
        return 1
    return 0
