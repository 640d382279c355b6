"""Delivery sinks for newly reconciled messages.

Sinks are invoked synchronously from inside reconciliation, so they must
enqueue or append and return promptly. Shipping messages off-device
(retries, backoff) belongs to whatever drains them.
"""

import json
import queue
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from chat_siphon.logging import get_logger
from chat_siphon.models import ReconciledMessage

logger = get_logger("delivery")

_UNSAFE_CHARS_RE = re.compile(r"[^\w.-]+")


@dataclass
class DeliveredMessage:
    """A message handed to a sink, together with its conversation."""

    chat_key: str
    title: str | None
    is_group: bool
    message: ReconciledMessage
    delivered_at: int  # Unix timestamp (seconds)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable form."""
        raw = self.message.message
        return {
            "id": self.message.id,
            "sequence": self.message.sequence,
            "chat_key": self.chat_key,
            "title": self.title,
            "is_group": self.is_group,
            "type": raw.type.value,
            "sender": raw.sender,
            "text": raw.text,
            "description": raw.description,
            "time": raw.time,
            "delivered_at": self.delivered_at,
        }


class DeliverySink(ABC):
    """Receives each newly deliverable message exactly once."""

    @abstractmethod
    def deliver(
        self,
        chat_key: str,
        title: str | None,
        is_group: bool,
        message: ReconciledMessage,
    ) -> None:
        """Accept a message for delivery. Must not block indefinitely."""


class CallbackSink(DeliverySink):
    """Adapts a plain callable to the DeliverySink interface."""

    def __init__(self, callback: Callable[[str, str | None, bool, ReconciledMessage], None]) -> None:
        self._callback = callback

    def deliver(
        self,
        chat_key: str,
        title: str | None,
        is_group: bool,
        message: ReconciledMessage,
    ) -> None:
        self._callback(chat_key, title, is_group, message)


class QueueSink(DeliverySink):
    """Bounded in-memory queue drained by a transport worker.

    When full, the oldest pending message is dropped to make room.
    """

    def __init__(self, maxsize: int = 10) -> None:
        if maxsize <= 0:
            raise ValueError(f"maxsize must be positive, got {maxsize}")
        self._queue: queue.Queue[DeliveredMessage] = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def deliver(
        self,
        chat_key: str,
        title: str | None,
        is_group: bool,
        message: ReconciledMessage,
    ) -> None:
        item = DeliveredMessage(chat_key, title, is_group, message, int(time.time()))
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except queue.Full:
                try:
                    dropped = self._queue.get_nowait()
                except queue.Empty:
                    continue
                self.dropped += 1
                logger.warning(
                    "Delivery queue full, dropped message: chat=%s id=%s",
                    dropped.chat_key,
                    dropped.message.id,
                )

    def get(self, timeout: float | None = None) -> DeliveredMessage | None:
        """Take the next pending message, waiting up to timeout seconds."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[DeliveredMessage]:
        """Take all pending messages without waiting."""
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def __len__(self) -> int:
        return self._queue.qsize()


def outbox_file_for(outbox_path: Path, chat_key: str) -> Path:
    """Map a conversation key to its outbox JSONL file."""
    safe = _UNSAFE_CHARS_RE.sub("_", chat_key).strip("_") or "chat"
    return outbox_path / f"{safe}.jsonl"


class JsonlOutboxSink(DeliverySink):
    """Appends delivered messages to per-conversation JSONL files."""

    def __init__(self, outbox_path: Path) -> None:
        self._outbox_path = outbox_path
        self.count = 0

    def deliver(
        self,
        chat_key: str,
        title: str | None,
        is_group: bool,
        message: ReconciledMessage,
    ) -> None:
        dest_path = outbox_file_for(self._outbox_path, chat_key)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        item = DeliveredMessage(chat_key, title, is_group, message, int(time.time()))
        with open(dest_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(item.to_dict(), ensure_ascii=False) + "\n")
        self.count += 1
        logger.info("Delivered message: chat=%s sequence=%s", chat_key, message.sequence)
