"""Console sink: prints records with rich."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.markup import escape

from ..fingerprint import DeletionRecord
from .base import Sink

FORMATS = ("plain", "colored", "json")

_STYLES = {
    "full_message": "red",
    "attachment_only": "yellow",
    "partial_edit": "cyan",
}


class ConsoleSink(Sink):
    """
    Settings:
        format: plain, colored or json (default colored)
    """

    type_name = "console"

    def __init__(self, settings: dict[str, Any] | None = None, console: Console | None = None):
        super().__init__(settings)
        self.format = str(self.settings.get("format", "colored")).lower()
        if self.format not in FORMATS:
            raise ValueError(f"Console format must be one of {', '.join(FORMATS)}, got {self.format!r}")
        self.console = console or Console()

    def deliver(self, record: DeletionRecord) -> None:
        if self.format == "json":
            self.console.print_json(json.dumps(record.to_dict(), default=str))
            return

        origin = record.origin_fingerprint
        who = origin.sender_identity or "unknown"
        where = origin.conversation_id if origin.conversation_id is not None else "?"
        ts = record.deletion_timestamp.strftime("%Y-%m-%d %H:%M:%S")
        content = record.recovered_content

        if self.format == "plain":
            line = f"[{ts}] #{record.journal_id} {record.classification} item={record.item_id} from={who} chat={where}"
            if content:
                line += f" content={content!r}"
            if record.recovered_attachments:
                line += f" attachments={len(record.recovered_attachments)}"
            self.console.print(line, markup=False, highlight=False)
            return

        style = _STYLES.get(record.classification, "white")
        self.console.print(
            f"[dim]{ts}[/dim] [bold {style}]{record.classification}[/bold {style}] "
            f"item [bold]{record.item_id}[/bold] from {escape(who)} in chat {where}"
        )
        if content:
            self.console.print(f"  [dim]content:[/dim] {escape(content)}")
        if record.recovered_attachments:
            self.console.print(f"  [dim]attachments removed:[/dim] {len(record.recovered_attachments)}")
