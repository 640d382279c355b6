"""CLI entry point for the watcher.

Allows running the watcher as a module:
    python -m chat_siphon.watcher replay snapshots.jsonl
"""

import signal
from dataclasses import replace
from pathlib import Path
from types import FrameType

import click

from chat_siphon.config import load_config
from chat_siphon.delivery import JsonlOutboxSink
from chat_siphon.history.state import HistoryState
from chat_siphon.logging import get_logger, setup_logging
from chat_siphon.watcher.daemon import request_shutdown, run_watcher
from chat_siphon.watcher.sources import JsonlReplaySource

logger = get_logger("watcher")


def signal_handler(signum: int, frame: FrameType | None) -> None:
    """Handle shutdown signals gracefully."""
    sig_name = signal.Signals(signum).name
    logger.info("Received signal %s, shutting down", sig_name)
    request_shutdown()


@click.group()
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Path to config.yaml")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Reconcile chat snapshots into deduplicated message history."""
    ctx.obj = load_config(config_path)


@cli.command()
@click.argument("snapshots", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--outbox", type=click.Path(file_okay=False, path_type=Path), help="Outbox directory override")
@click.option("--state-db", type=click.Path(dir_okay=False, path_type=Path), help="History database override")
@click.option("--no-state", is_flag=True, help="Do not load or save durable history")
@click.pass_obj
def replay(config, snapshots: Path, outbox: Path | None, state_db: Path | None, no_state: bool) -> None:
    """Run recorded SNAPSHOTS (JSONL) through reconciliation."""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    history_config = config.history
    if no_state:
        history_config = replace(history_config, state_db=None)
    elif state_db is not None:
        history_config = replace(history_config, state_db=state_db)
    delivery = config.delivery
    if outbox is not None:
        delivery = replace(delivery, outbox_path=outbox)
    watcher = replace(config.watcher, interval_seconds=0)
    config = replace(config, history=history_config, delivery=delivery, watcher=watcher)

    source = JsonlReplaySource(snapshots)
    sink = JsonlOutboxSink(config.delivery.outbox_path)
    try:
        engine = run_watcher(config, source, sink=sink)
    finally:
        source.close()

    click.echo(f"Delivered {sink.count} messages across {len(engine.chat_keys())} conversations")
    click.echo(f"Outbox: {config.delivery.outbox_path}")


@cli.command()
@click.option("--state-db", type=click.Path(dir_okay=False, path_type=Path), help="History database override")
@click.pass_obj
def history(config, state_db: Path | None) -> None:
    """List conversations stored in the history database."""
    setup_logging("watcher", console=False)
    db_path = state_db or config.history.state_db
    if db_path is None or not db_path.exists():
        click.echo("No history database found", err=True)
        raise SystemExit(1)

    with HistoryState(db_path) as state:
        records = state.load_conversations()

    click.echo(f"Found {len(records)} conversations:\n")
    for record in reversed(records):
        kind = "group" if record.is_group else "direct"
        click.echo(f"\033[1m{record.title or record.chat_key}\033[0m ({kind})")
        click.echo(f"Key: {record.chat_key} | Entries: {len(record.entries)} | Next sequence: {record.next_sequence}")
        click.echo("-" * 40)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
