"""
Delivery sinks for deletion records.

Components:
- base: Sink protocol (initialize / deliver / finalize)
- registry: sink type → class, and construction from configuration
- dispatcher: sequential best-effort delivery across sinks
- file, sqlite_table, webhook, console: built-in sinks
"""

from .base import Sink
from .console import ConsoleSink
from .dispatcher import SinkDispatcher
from .file import FileSink
from .registry import build_sinks, get_sink_class, list_sinks, register_sink
from .sqlite_table import SqliteTableSink
from .webhook import WebhookSink

__all__ = [
    "Sink",
    "SinkDispatcher",
    "FileSink",
    "SqliteTableSink",
    "WebhookSink",
    "ConsoleSink",
    "build_sinks",
    "get_sink_class",
    "list_sinks",
    "register_sink",
]
