"""
Tracker configuration.

Configuration is data; behavior lives in the components that consume it.
A config file is either TOML or YAML, chosen by suffix. Every section is
optional and falls back to the defaults below.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any


class DeletionType(str, Enum):
    """Classification types a detection can carry."""

    FULL_MESSAGE = "full_message"
    ATTACHMENT_ONLY = "attachment_only"
    PARTIAL_EDIT = "partial_edit"


FULL_REPLACEMENT_MODES = ("never", "blanked", "any")
SINK_TYPES = ("file", "sqlite", "webhook", "console")


@dataclass(frozen=True)
class SourceConfig:
    """Monitored chat database and polling behavior."""

    db_path: Path = Path("~/Library/Messages/chat.db")
    poll_interval_ms: int = 1000
    max_batch_size: int = 100
    initial_backfill: int = 1000
    lookback_seconds: float = 5.0
    max_consecutive_errors: int = 10

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000.0


@dataclass(frozen=True)
class StateConfig:
    """Tracker-owned state database and retention."""

    db_path: Path = Path("./unsend_state.db")
    retention_days: int = 30
    purge_interval_hours: float = 0.0


@dataclass(frozen=True)
class DetectionConfig:
    types: tuple[DeletionType, ...] = (DeletionType.FULL_MESSAGE, DeletionType.ATTACHMENT_ONLY)
    track_edits: bool = False
    recover_edit_content: bool = False
    full_replacement: str = "blanked"


@dataclass(frozen=True)
class FilterConfig:
    """Item filters. Empty lists mean every item is tracked."""

    senders: tuple[str, ...] = ()
    conversations: tuple[int, ...] = ()

    def matches(self, sender_identity: str | None, conversation_id: int | None) -> bool:
        if not self.senders and not self.conversations:
            return True
        if conversation_id is not None and conversation_id in self.conversations:
            return True
        if sender_identity:
            return any(s in sender_identity for s in self.senders)
        return False


@dataclass(frozen=True)
class SinkConfig:
    type: str
    enabled: bool = True
    settings: dict[str, Any] = field(default_factory=dict)


def _default_sinks() -> tuple[SinkConfig, ...]:
    return (
        SinkConfig(type="console", settings={"format": "colored"}),
        SinkConfig(type="file", settings={"path": "./deletions.jsonl"}),
    )


@dataclass(frozen=True)
class TrackerConfig:
    source: SourceConfig = field(default_factory=SourceConfig)
    state: StateConfig = field(default_factory=StateConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)
    sinks: tuple[SinkConfig, ...] = field(default_factory=_default_sinks)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict suitable for YAML/JSON output."""
        data = asdict(self)
        data["source"]["db_path"] = str(self.source.db_path)
        data["state"]["db_path"] = str(self.state.db_path)
        data["detection"]["types"] = [t.value for t in self.detection.types]
        data["filters"]["senders"] = list(self.filters.senders)
        data["filters"]["conversations"] = list(self.filters.conversations)
        data["sinks"] = [asdict(s) for s in self.sinks]
        return data

    def with_paths_resolved(self, base: Path) -> TrackerConfig:
        """Expand ``~`` and anchor relative paths at ``base``."""
        return replace(
            self,
            source=replace(self.source, db_path=_resolve(self.source.db_path, base)),
            state=replace(self.state, db_path=_resolve(self.state.db_path, base)),
        )


def _resolve(path: Path, base: Path) -> Path:
    path = path.expanduser()
    return path if path.is_absolute() else base / path


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _int(section: dict[str, Any], key: str, default: int, minimum: int) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {value}")
    return value


def _float(section: dict[str, Any], key: str, default: float, minimum: float) -> float:
    raw = section.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be a number, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {value}")
    return value


def _parse_source(data: dict[str, Any]) -> SourceConfig:
    d = SourceConfig()
    return SourceConfig(
        db_path=Path(str(data.get("db_path", d.db_path))),
        poll_interval_ms=_int(data, "poll_interval_ms", d.poll_interval_ms, 10),
        max_batch_size=_int(data, "max_batch_size", d.max_batch_size, 1),
        initial_backfill=_int(data, "initial_backfill", d.initial_backfill, 0),
        lookback_seconds=_float(data, "lookback_seconds", d.lookback_seconds, 0.0),
        max_consecutive_errors=_int(data, "max_consecutive_errors", d.max_consecutive_errors, 1),
    )


def _parse_state(data: dict[str, Any]) -> StateConfig:
    d = StateConfig()
    return StateConfig(
        db_path=Path(str(data.get("db_path", d.db_path))),
        retention_days=_int(data, "retention_days", d.retention_days, 1),
        purge_interval_hours=_float(data, "purge_interval_hours", d.purge_interval_hours, 0.0),
    )


def _parse_detection(data: dict[str, Any]) -> DetectionConfig:
    d = DetectionConfig()

    raw_types = data.get("types", [t.value for t in d.types])
    if not isinstance(raw_types, list):
        raise ValueError("detection.types must be a list")
    types: list[DeletionType] = []
    for raw in raw_types:
        try:
            dt = DeletionType(str(raw).strip().lower())
        except ValueError:
            valid = ", ".join(t.value for t in DeletionType)
            raise ValueError(f"Unknown classification type {raw!r} (expected one of: {valid})") from None
        if dt not in types:
            types.append(dt)

    mode = str(data.get("full_replacement", d.full_replacement)).strip().lower()
    if mode not in FULL_REPLACEMENT_MODES:
        raise ValueError(
            f"full_replacement must be one of {', '.join(FULL_REPLACEMENT_MODES)}, got {mode!r}"
        )

    return DetectionConfig(
        types=tuple(types),
        track_edits=bool(data.get("track_edits", d.track_edits)),
        recover_edit_content=bool(data.get("recover_edit_content", d.recover_edit_content)),
        full_replacement=mode,
    )


def _parse_filters(data: dict[str, Any]) -> FilterConfig:
    senders = data.get("senders") or []
    conversations = data.get("conversations") or []
    if not isinstance(senders, list) or not isinstance(conversations, list):
        raise ValueError("filters.senders and filters.conversations must be lists")
    try:
        conversation_ids = tuple(int(c) for c in conversations)
    except (TypeError, ValueError):
        raise ValueError("filters.conversations must contain integer ids") from None
    return FilterConfig(
        senders=tuple(str(s) for s in senders if str(s).strip()),
        conversations=conversation_ids,
    )


def _parse_sinks(raw_sinks: Any) -> tuple[SinkConfig, ...]:
    if raw_sinks is None:
        return _default_sinks()
    if not isinstance(raw_sinks, list):
        raise ValueError("sinks must be a list of tables")

    sinks: list[SinkConfig] = []
    for i, raw in enumerate(raw_sinks):
        if not isinstance(raw, dict):
            raise ValueError(f"sinks[{i}] must be a table")
        sink_type = str(raw.get("type", "")).strip().lower()
        if sink_type not in SINK_TYPES:
            raise ValueError(
                f"sinks[{i}].type must be one of {', '.join(SINK_TYPES)}, got {sink_type!r}"
            )
        sinks.append(
            SinkConfig(
                type=sink_type,
                enabled=bool(raw.get("enabled", True)),
                settings=_coerce_dict(raw.get("settings")),
            )
        )
    return tuple(sinks)


def parse_config(data: dict[str, Any]) -> TrackerConfig:
    """Build a TrackerConfig from an already-decoded mapping.

    Raises:
        ValueError: if any value is invalid
    """
    return TrackerConfig(
        source=_parse_source(_coerce_dict(data.get("source"))),
        state=_parse_state(_coerce_dict(data.get("state"))),
        detection=_parse_detection(_coerce_dict(data.get("detection"))),
        filters=_parse_filters(_coerce_dict(data.get("filters"))),
        sinks=_parse_sinks(data.get("sinks")),
    )


def load_config(path: Path) -> TrackerConfig:
    """
    Load tracker configuration from a TOML or YAML file.

    Relative paths inside the file are resolved against the file's directory.

    Args:
        path: Path to a .toml, .yml or .yaml file

    Returns:
        The validated configuration

    Raises:
        ValueError: if the file format is unsupported or a value is invalid
    """
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()

    if suffix == ".toml":
        import tomllib

        data = tomllib.loads(text)
    elif suffix in (".yml", ".yaml"):
        import yaml

        data = yaml.safe_load(text) or {}
    else:
        raise ValueError(f"Unsupported config format: {path.name} (use .toml, .yml or .yaml)")

    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping: {path}")

    return parse_config(data).with_paths_resolved(path.parent.resolve())


def dump_config(config: TrackerConfig) -> str:
    """Render configuration as YAML."""
    import yaml

    return yaml.safe_dump(config.to_dict(), sort_keys=False)
