"""
Sink registry for sink type → Sink class lookup.

Built-in sinks are registered at import time. Configuration selects sinks
by type name.
"""

from __future__ import annotations

import logging
from typing import Sequence

from ..config import SinkConfig
from .base import Sink
from .console import ConsoleSink
from .file import FileSink
from .sqlite_table import SqliteTableSink
from .webhook import WebhookSink

logger = logging.getLogger(__name__)

# Global registry: sink type → sink class
_SINKS: dict[str, type[Sink]] = {}


def register_sink(sink_cls: type[Sink]) -> None:
    """
    Register a sink class by its type name.

    Args:
        sink_cls: Sink subclass with a non-empty type_name
    """
    if not sink_cls.type_name:
        raise ValueError(f"{sink_cls.__name__} has no type_name")
    _SINKS[sink_cls.type_name] = sink_cls


def get_sink_class(type_name: str) -> type[Sink] | None:
    return _SINKS.get(type_name)


def list_sinks() -> list[str]:
    return list(_SINKS.keys())


def build_sinks(configs: Sequence[SinkConfig]) -> list[Sink]:
    """
    Instantiate enabled sinks in configured order.

    A sink whose settings are invalid is logged and left out; it never
    prevents the others from being built.
    """
    sinks: list[Sink] = []
    for i, cfg in enumerate(configs):
        if not cfg.enabled:
            logger.info("Sink %d (%s) disabled", i, cfg.type)
            continue
        sink_cls = get_sink_class(cfg.type)
        if sink_cls is None:
            logger.warning("Sink %d: unknown type %r", i, cfg.type)
            continue
        try:
            sinks.append(sink_cls(cfg.settings))
        except (ValueError, TypeError) as e:
            logger.warning("Sink %d (%s) misconfigured: %s", i, cfg.type, e)
    return sinks


for _cls in (FileSink, SqliteTableSink, WebhookSink, ConsoleSink):
    register_sink(_cls)
