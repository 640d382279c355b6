"""Message history: fingerprinting, per-chat conversations and the store service."""

from .conversation import Conversation, ConversationRecord, MessageEntry
from .fingerprint import PREV_ANCHOR, Fingerprint, build_fingerprint, fingerprint_message
from .store import HistoryEngine

__all__ = [
    "PREV_ANCHOR",
    "Conversation",
    "ConversationRecord",
    "Fingerprint",
    "HistoryEngine",
    "MessageEntry",
    "build_fingerprint",
    "fingerprint_message",
]
