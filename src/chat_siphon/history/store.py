"""Conversation store service.

HistoryEngine owns an LRU-bounded map of conversations and the single lock
that guards all of them. One engine is constructed per session and passed
to whoever needs it.
"""

import threading
from collections import OrderedDict

from chat_siphon.config import HistoryConfig
from chat_siphon.delivery import DeliverySink
from chat_siphon.history.conversation import Conversation, ConversationRecord
from chat_siphon.logging import get_logger
from chat_siphon.models import MatchStats, RawMessage, ReconciledMessage, Snapshot

logger = get_logger("history")


class HistoryEngine:
    """Reconciles snapshots into stable, deduplicated per-chat history."""

    def __init__(self, config: HistoryConfig | None = None, sink: DeliverySink | None = None) -> None:
        """Initialize an empty engine.

        Args:
            config: History limits and fingerprint tuning (defaults if omitted)
            sink: Receives newly deliverable messages, may be None
        """
        self.config = config or HistoryConfig()
        self.sink = sink
        self._lock = threading.Lock()
        self._conversations: OrderedDict[str, Conversation] = OrderedDict()

    def reconcile(self, snapshot: Snapshot) -> list[ReconciledMessage]:
        """Reconcile one snapshot, delivering new incoming messages.

        Snapshots that are not chat screens, have no chat key, or carry no
        rows leave history untouched; their rows come back hidden.

        Args:
            snapshot: One poll of the visible chat

        Returns:
            One ReconciledMessage per snapshot row, in row order
        """
        chat_key = snapshot.chat_key
        if not snapshot.is_chat or chat_key is None or not snapshot.messages:
            return [ReconciledMessage(message=m) for m in snapshot.messages]

        with self._lock:
            conversation = self._touch(chat_key)
            results = conversation.apply(
                chat_key,
                snapshot.title,
                snapshot.is_group,
                snapshot.messages,
                self.sink,
            )

        delivered = sum(1 for r in results if r.delivered)
        logger.debug(
            "Reconciled snapshot: chat=%s rows=%d duplicates=%d delivered=%d",
            chat_key,
            len(results),
            sum(1 for r in results if r.duplicate),
            delivered,
        )
        return results

    def match_stats(self, chat_key: str, messages: list[RawMessage]) -> MatchStats:
        """Report how many deliverable rows resolve to known history.

        Reading a known conversation refreshes its LRU recency.
        """
        with self._lock:
            conversation = self._conversations.get(chat_key)
            if conversation is None:
                return MatchStats()
            self._conversations.move_to_end(chat_key)
            return conversation.match_stats(messages)

    def has_conversation(self, chat_key: str) -> bool:
        with self._lock:
            return chat_key in self._conversations

    def chat_keys(self) -> list[str]:
        """Conversation keys, least recently touched first."""
        with self._lock:
            return list(self._conversations)

    def export_conversation(self, chat_key: str) -> ConversationRecord | None:
        """Durable copy of one conversation, or None if unknown."""
        with self._lock:
            conversation = self._conversations.get(chat_key)
            if conversation is None:
                return None
            return conversation.to_record(chat_key)

    def export_all(self) -> list[ConversationRecord]:
        with self._lock:
            return [c.to_record(key) for key, c in self._conversations.items()]

    def restore(self, records: list[ConversationRecord]) -> None:
        """Load durable conversations, in order from least to most recent.

        Restored conversations skip the baseline pass, so messages already
        seen before a restart are not delivered again.
        """
        with self._lock:
            for record in records:
                self._conversations[record.chat_key] = Conversation.from_record(
                    record,
                    max_messages=self.config.max_messages_per_chat,
                    position_step=self.config.position_step,
                )
                self._conversations.move_to_end(record.chat_key)
            self._evict()
        logger.info("Restored history: conversations=%d", len(records))

    def _touch(self, chat_key: str) -> Conversation:
        conversation = self._conversations.get(chat_key)
        if conversation is None:
            conversation = Conversation(
                max_messages=self.config.max_messages_per_chat,
                position_step=self.config.position_step,
            )
            self._conversations[chat_key] = conversation
            self._evict()
        self._conversations.move_to_end(chat_key)
        return conversation

    def _evict(self) -> None:
        while len(self._conversations) > self.config.max_conversations:
            evicted_key, evicted = self._conversations.popitem(last=False)
            logger.info("Evicted conversation: chat=%s entries=%d", evicted_key, len(evicted))
