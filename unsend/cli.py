"""CLI entrypoint for unsend."""

import sys
from datetime import datetime, timezone
from pathlib import Path

import click

from . import __version__
from .log import LEVELS, configure_logging

DEFAULT_CONFIG_NAMES = ("unsend.toml", "unsend.yml", "unsend.yaml")


def _auto_detect_config(start: Path) -> Path | None:
    """Find a config file in `start`."""
    for name in DEFAULT_CONFIG_NAMES:
        candidate = start / name
        if candidate.is_file():
            return candidate
    return None


def _load(ctx: click.Context):
    """Load configuration lazily so `config init` works without one."""
    from .config import TrackerConfig, load_config

    if "config" in ctx.obj:
        return ctx.obj["config"]

    path = ctx.obj["config_path"]
    if path is None:
        config = TrackerConfig().with_paths_resolved(Path.cwd())
    else:
        try:
            config = load_config(path)
        except (OSError, ValueError) as e:
            raise click.ClickException(f"Invalid configuration {path}: {e}") from e
    ctx.obj["config"] = config
    return config


def _parse_time(value: str | None, param: str) -> datetime | None:
    if value is None:
        return None
    try:
        ts = datetime.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"Not an ISO-8601 timestamp: {value!r}", param_hint=param) from None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


@click.group()
@click.version_option(__version__, prog_name="unsend")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to a .toml/.yml config (defaults to ./unsend.toml or ./unsend.yml)",
)
@click.option(
    "--log-level",
    type=click.Choice(LEVELS, case_sensitive=False),
    default="INFO",
    help="Logging verbosity",
)
@click.option("--log-json", is_flag=True, help="Emit logs as JSON lines")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str, log_json: bool) -> None:
    """unsend - detect silently deleted and edited messages.

    Polls a chat database, fingerprints what it sees, and journals every
    message or attachment that later disappears.
    """
    ctx.ensure_object(dict)
    configure_logging(log_level, json_output=log_json)
    ctx.obj["config_path"] = config_path or _auto_detect_config(Path.cwd())


@cli.command()
@click.option("--max-ticks", type=click.IntRange(min=1), default=None, help="Stop after N polls")
@click.option("--show-events", is_flag=True, help="Print observer events as they happen")
@click.pass_context
def run(ctx: click.Context, max_ticks: int | None, show_events: bool) -> None:
    """Track deletions until interrupted (Ctrl+C or SIGTERM)."""
    from .commands.run_cmd import run_tracker

    config = _load(ctx)
    try:
        exit_code = run_tracker(config, max_ticks=max_ticks, show_events=show_events)
    except RuntimeError as e:
        raise click.ClickException(str(e)) from e
    sys.exit(exit_code)


@cli.command()
@click.option("--since", default=None, metavar="ISO", help="Only deletions at or after this time")
@click.option("--until", default=None, metavar="ISO", help="Only deletions at or before this time")
@click.option("--last", "last_n", type=click.IntRange(min=1), default=None, help="Show only the N most recent")
@click.option("--json", "output_json", is_flag=True, help="Output records as JSON lines")
@click.pass_context
def deletions(ctx: click.Context, since: str | None, until: str | None, last_n: int | None, output_json: bool) -> None:
    """List recorded deletions, newest first.

    Examples:

        unsend deletions --last 20

        unsend deletions --since 2026-01-01T00:00:00 --json
    """
    from .commands.journal_cmd import run_deletions

    config = _load(ctx)
    run_deletions(
        config.state.db_path,
        since=_parse_time(since, "--since"),
        until=_parse_time(until, "--until"),
        last_n=last_n,
        output_json=output_json,
    )


@cli.command()
@click.pass_context
def summary(ctx: click.Context) -> None:
    """Show journal statistics."""
    from .commands.journal_cmd import run_summary

    run_summary(_load(ctx).state.db_path)


@cli.command()
@click.option("--days", type=click.IntRange(min=1), default=None, help="Retention horizon (defaults to config)")
@click.confirmation_option(prompt="Purged state cannot be recovered. Continue?")
@click.pass_context
def purge(ctx: click.Context, days: int | None) -> None:
    """Hard-delete fingerprints and journal entries past retention."""
    from .commands.journal_cmd import run_purge

    config = _load(ctx)
    sys.exit(run_purge(config.state.db_path, days or config.state.retention_days))


@cli.group()
def config() -> None:
    """Write or inspect configuration."""
    pass


@config.command("init")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path), default=Path("unsend.yml"))
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def config_init(path: Path, force: bool) -> None:
    """Write the default configuration to PATH (default ./unsend.yml)."""
    from .commands.config_cmd import run_config_init

    sys.exit(run_config_init(path, force=force))


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Print the effective configuration."""
    from .commands.config_cmd import run_config_show

    sys.exit(run_config_show(_load(ctx)))


if __name__ == "__main__":
    cli()
