"""Config commands - write and inspect tracker configuration."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console

from ..config import TrackerConfig, dump_config


def run_config_init(path: Path, *, force: bool = False) -> int:
    """Write the default configuration as YAML."""
    console = Console()
    if path.exists() and not force:
        console.print(f"[red]{path} already exists[/red] (use --force to overwrite)")
        return 1
    if path.suffix.lower() not in (".yml", ".yaml"):
        console.print(f"[red]Config init writes YAML; use a .yml or .yaml path, not {path.name}[/red]")
        return 1
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_config(TrackerConfig()), encoding="utf-8")
    console.print(f"Wrote default configuration to [bold]{path}[/bold]")
    return 0


def run_config_show(config: TrackerConfig) -> int:
    """Print the effective configuration as YAML."""
    console = Console()
    console.print(dump_config(config), markup=False, highlight=False, emoji=False, soft_wrap=True)
    return 0
