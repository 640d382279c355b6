"""Watcher daemon main loop: poll, scroll, reconcile, persist."""

import time

from chat_siphon.config import Config
from chat_siphon.delivery import DeliverySink, JsonlOutboxSink
from chat_siphon.history.state import HistoryState
from chat_siphon.history.store import HistoryEngine
from chat_siphon.logging import get_logger, setup_logging
from chat_siphon.scroll.controller import ChatScreen, ScrollController
from chat_siphon.watcher.sources import SnapshotSource

logger = get_logger("watcher")

# Global flag for graceful shutdown
_shutdown_requested = False


def request_shutdown() -> None:
    """Request graceful shutdown of the watcher daemon."""
    global _shutdown_requested
    _shutdown_requested = True


def is_shutdown_requested() -> bool:
    """Check if shutdown has been requested."""
    return _shutdown_requested


def reset_shutdown() -> None:
    """Reset shutdown flag (useful for testing)."""
    global _shutdown_requested
    _shutdown_requested = False


def run_watch_cycle(
    source: SnapshotSource,
    engine: HistoryEngine,
    controller: ScrollController | None = None,
    state: HistoryState | None = None,
    allow_scroll: bool = True,
) -> int:
    """Run one poll through scrolling and reconciliation.

    Args:
        source: Snapshot source to poll
        engine: History engine reconciling the snapshot
        controller: Scroll controller, or None when no gesture layer exists
        state: Durable history to update, may be None
        allow_scroll: Whether scrolling is currently permitted

    Returns:
        Number of messages delivered
    """
    try:
        snapshot = source.poll()
        if snapshot is None:
            return 0

        if controller is not None:
            snapshot = controller.settle(snapshot, allow_scroll=allow_scroll)

        results = engine.reconcile(snapshot)
        delivered = sum(1 for r in results if r.delivered)

        chat_key = snapshot.chat_key
        if state is not None and chat_key is not None and snapshot.is_chat and snapshot.messages:
            record = engine.export_conversation(chat_key)
            if record is not None:
                state.save_conversation(record)

        return delivered
    except Exception:
        logger.exception("Error in watch cycle")
        return 0


def run_watcher(
    config: Config,
    source: SnapshotSource,
    screen: ChatScreen | None = None,
    sink: DeliverySink | None = None,
) -> HistoryEngine:
    """Run the watcher daemon main loop.

    Restores durable history, then polls the source on the configured
    interval until shutdown is requested or the source is exhausted.

    Args:
        config: Application configuration
        source: Snapshot source to poll
        screen: Gesture layer; scrolling is disabled without one
        sink: Delivery sink (defaults to the JSONL outbox)

    Returns:
        The engine, holding the final history
    """
    reset_shutdown()

    setup_logging("watcher")

    if sink is None:
        sink = JsonlOutboxSink(config.delivery.outbox_path)
    engine = HistoryEngine(config.history, sink=sink)
    controller = None
    if screen is not None:
        controller = ScrollController(engine, screen, config.scroll, should_stop=is_shutdown_requested)

    interval = config.watcher.interval_seconds
    state_db = config.history.state_db

    logger.info(
        "Starting watcher daemon: state_db=%s interval=%.2fs scrolling=%s",
        state_db,
        interval,
        controller is not None,
    )

    state = HistoryState(state_db) if state_db is not None else None
    try:
        if state is not None:
            engine.restore(state.load_conversations())

        while not is_shutdown_requested():
            delivered = run_watch_cycle(source, engine, controller, state, config.watcher.allow_scroll)

            if delivered > 0:
                logger.info("Cycle complete: delivered=%d", delivered)
            else:
                logger.debug("Cycle complete: nothing new")

            if source.exhausted or is_shutdown_requested():
                break

            # Sleep in small increments to allow graceful shutdown
            sleep_remaining = interval
            while sleep_remaining > 0 and not is_shutdown_requested():
                sleep_time = min(1.0, sleep_remaining)
                time.sleep(sleep_time)
                sleep_remaining -= sleep_time
    finally:
        if state is not None:
            state.close()

    logger.info("Watcher daemon stopped")
    return engine
