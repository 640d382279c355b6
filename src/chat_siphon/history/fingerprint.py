"""Fingerprinting of chat rows for identity resolution.

Rows carry no reliable native id, so identity is derived from content,
sender, direction and approximate screen position.
"""

import hashlib
import re
from dataclasses import dataclass

from chat_siphon.models import Bounds, MessageType, RawMessage

# prev_base_hash of the first fingerprintable row in a snapshot
PREV_ANCHOR = "__start__"

DEFAULT_POSITION_STEP = 24

_WHITESPACE_RE = re.compile(r"\s+")
_PLACEHOLDER = "none"


@dataclass(frozen=True)
class Fingerprint:
    """Hash keys identifying a row's likely content identity."""

    base_hash: str  # direction, type, text, description
    content_hash: str  # base inputs plus sender
    sender_key: str
    pos_hash: str  # tie-breaker only, "" when bounds are unknown


def normalize_for_hash(value: str | None) -> str:
    """Normalize a field for hashing.

    Trims, lowercases locale-independently and collapses whitespace runs.

    Args:
        value: Raw field value

    Returns:
        Normalized string, or "" for missing/blank values
    """
    if value is None or not value.strip():
        return ""
    return _WHITESPACE_RE.sub(" ", value.strip().casefold())


def hash_payload(parts: list[str]) -> str:
    """Compute hex-encoded SHA-256 of the pipe-joined parts."""
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def _content_field(value: str | None) -> str:
    normalized = normalize_for_hash(value)
    return "" if normalized == _PLACEHOLDER else normalized


def is_valid_for_history(message: RawMessage) -> bool:
    """Check whether a row may be stored in history.

    Outgoing rows, system rows, and rows whose text and description are
    both blank (or the "none" placeholder) are never stored.
    """
    if not message.incoming:
        return False
    if message.type == MessageType.SYSTEM:
        return False
    return bool(_content_field(message.text) or _content_field(message.description))


def build_pos_hash(bounds: Bounds | None, step: int = DEFAULT_POSITION_STEP) -> str:
    """Quantize a row's bounds into a coarse position key.

    Args:
        bounds: Row bounds, may be None
        step: Quantization unit in pixels

    Returns:
        "cx,cy,w,h" in quantized units, or "" when bounds are missing/empty
    """
    if step <= 0:
        raise ValueError(f"step must be positive, got {step}")
    if bounds is None or bounds.is_empty:
        return ""
    return ",".join(
        str(v // step) for v in (bounds.center_x, bounds.center_y, bounds.width, bounds.height)
    )


def build_fingerprint(message: RawMessage, step: int = DEFAULT_POSITION_STEP) -> Fingerprint:
    """Build the fingerprint of a row, regardless of history validity."""
    direction = "in" if message.incoming else "out"
    msg_type = message.type.value
    sender_key = normalize_for_hash(message.sender)
    text = normalize_for_hash(message.text)
    desc = normalize_for_hash(message.description)
    return Fingerprint(
        base_hash=hash_payload([direction, msg_type, text, desc]),
        content_hash=hash_payload([direction, msg_type, sender_key or "?", text, desc]),
        sender_key=sender_key,
        pos_hash=build_pos_hash(message.bounds, step),
    )


def fingerprint_message(message: RawMessage, step: int = DEFAULT_POSITION_STEP) -> Fingerprint | None:
    """Fingerprint a row, or return None if it is not valid for history."""
    if not is_valid_for_history(message):
        return None
    return build_fingerprint(message, step)


def matches_sender(existing: str, candidate: str) -> bool:
    """Two sender keys are compatible if either is blank or they are equal."""
    if existing and candidate:
        return existing == candidate
    return True


def matches_pos(existing: str, candidate: str) -> bool:
    if not existing or not candidate:
        return True
    return existing == candidate


def row_key(message: RawMessage) -> str:
    """Key of a row for snapshot signatures.

    Uses the sampler's row id when present, otherwise a short content digest.
    """
    if message.id:
        return message.id
    direction = "in" if message.incoming else "out"
    return hash_payload(
        [
            direction,
            message.type.value,
            normalize_for_hash(message.sender),
            normalize_for_hash(message.text),
            normalize_for_hash(message.description),
        ]
    )[:16]
