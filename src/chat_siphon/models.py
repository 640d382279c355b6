"""Snapshot data models.

A snapshot is one poll of the visible chat list, produced by the UI sampler.
Reconciliation turns each row of it into a ReconciledMessage.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from chat_siphon.logging import get_logger

logger = get_logger("models")


class MessageType(str, Enum):
    """Kind of chat row as reported by the sampler."""

    TEXT = "text"
    IMAGE = "image"
    VOICE = "voice"
    VIDEO = "video"
    STICKER = "sticker"
    SYSTEM = "system"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: "str | MessageType | None") -> "MessageType":
        """Map a sampler type label to a MessageType, defaulting to UNKNOWN."""
        if isinstance(value, MessageType):
            return value
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class Bounds:
    """Screen rectangle of a row, in pixels."""

    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def center_x(self) -> int:
        return (self.left + self.right) // 2

    @property
    def center_y(self) -> int:
        return (self.top + self.bottom) // 2

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def to_list(self) -> list[int]:
        return [self.left, self.top, self.right, self.bottom]

    @classmethod
    def parse(cls, value: Any) -> "Bounds | None":
        """Read bounds from `[left, top, right, bottom]` or a dict with those keys.

        Coordinates are truncated to whole pixels. Returns None for a missing
        or malformed value.
        """
        if not value:
            return None
        try:
            if isinstance(value, dict):
                return cls(*(int(value[k]) for k in ("left", "top", "right", "bottom")))
            if isinstance(value, (list, tuple)) and len(value) == 4:
                return cls(*(int(v) for v in value))
        except (KeyError, TypeError, ValueError):
            pass
        logger.warning("Ignoring malformed bounds: %r", value)
        return None


@dataclass
class RawMessage:
    """One visible chat row, as observed in a single snapshot."""

    incoming: bool
    type: MessageType = MessageType.TEXT
    sender: str | None = None
    text: str | None = None
    description: str | None = None
    bounds: Bounds | None = None
    clickable: bool = False
    long_clickable: bool = False
    id: str | None = None  # Sampler row reference, not stable across polls
    time: str | None = None  # Time label shown next to the row, if any

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RawMessage":
        """Build a RawMessage from its JSON form."""
        return cls(
            incoming=bool(data.get("incoming", False)),
            type=MessageType.parse(data.get("type")),
            sender=data.get("sender"),
            text=data.get("text"),
            description=data.get("description", data.get("desc")),
            bounds=Bounds.parse(data.get("bounds")),
            clickable=bool(data.get("clickable", False)),
            long_clickable=bool(data.get("long_clickable", False)),
            id=data.get("id"),
            time=data.get("time"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable form."""
        return {
            "id": self.id,
            "incoming": self.incoming,
            "type": self.type.value,
            "sender": self.sender,
            "text": self.text,
            "description": self.description,
            "bounds": self.bounds.to_list() if self.bounds else None,
            "clickable": self.clickable,
            "long_clickable": self.long_clickable,
            "time": self.time,
        }


@dataclass
class Snapshot:
    """Ordered rows visible for one conversation, oldest first."""

    screen: str = "chat"
    title: str | None = None
    chat_id: str | None = None
    messages: list[RawMessage] = field(default_factory=list)
    is_group: bool = False

    @property
    def chat_key(self) -> str | None:
        """Conversation key: chat id if present, otherwise the title."""
        for candidate in (self.chat_id, self.title):
            if candidate and candidate.strip():
                return candidate.strip()
        return None

    @property
    def is_chat(self) -> bool:
        return self.screen == "chat"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        """Build a Snapshot from its JSON form."""
        return cls(
            screen=data.get("screen", "chat"),
            title=data.get("title"),
            chat_id=data.get("chat_id"),
            messages=[RawMessage.from_dict(m) for m in data.get("messages") or []],
            is_group=bool(data.get("is_group", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable form."""
        return {
            "screen": self.screen,
            "title": self.title,
            "chat_id": self.chat_id,
            "messages": [m.to_dict() for m in self.messages],
            "is_group": self.is_group,
        }


@dataclass
class ReconciledMessage:
    """Outcome of reconciling one snapshot row against history."""

    message: RawMessage
    id: str | None = None  # Stable entry id; None for rows that are never stored
    sequence: int | None = None
    hidden: bool = True
    duplicate: bool = False  # Row resolved to an existing history entry
    delivered: bool = False  # Row was handed to the delivery sink

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable form."""
        return {
            "id": self.id,
            "sequence": self.sequence,
            "hidden": self.hidden,
            "duplicate": self.duplicate,
            "delivered": self.delivered,
            "message": self.message.to_dict(),
        }


@dataclass(frozen=True)
class MatchStats:
    """How much of a snapshot's deliverable content is already known."""

    matched: int = 0
    gap: int = 0
