"""Per-conversation message history and entry matching.

Entries live in an append-only arena keyed by integer handles, oldest first.
Three indexes map hash keys to handle lists:

- base index: base_hash -> handles (sender-agnostic content)
- content index: content_hash -> handles (includes aliases seen later)
- chain index: (prev_base_hash, base_hash) -> handles (adjacency)

All mutation happens under the owning HistoryEngine's lock.
"""

import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace

from chat_siphon.delivery import DeliverySink
from chat_siphon.history.fingerprint import (
    DEFAULT_POSITION_STEP,
    PREV_ANCHOR,
    Fingerprint,
    fingerprint_message,
    matches_pos,
    matches_sender,
)
from chat_siphon.logging import get_logger
from chat_siphon.models import MatchStats, RawMessage, ReconciledMessage

logger = get_logger("history")

DEFAULT_MAX_MESSAGES = 200


@dataclass
class MessageEntry:
    """A stored message identity. id and sequence never change."""

    handle: int
    id: str
    sequence: int
    base_hash: str
    prev_base_hash: str
    content_hashes: list[str] = field(default_factory=list)
    sender_key: str = ""
    pos_hash: str = ""


@dataclass
class ConversationRecord:
    """Durable form of a conversation: enough to resume without re-delivery."""

    chat_key: str
    title: str | None
    is_group: bool
    next_sequence: int
    entries: list[MessageEntry] = field(default_factory=list)


def build_stable_id() -> str:
    return f"wx-{uuid.uuid4()}"


def compute_prev_bases(fingerprints: list[Fingerprint | None]) -> list[str]:
    """Base hash of the nearest earlier fingerprintable row, per row."""
    prev_bases = []
    running = PREV_ANCHOR
    for fingerprint in fingerprints:
        prev_bases.append(running)
        if fingerprint is not None:
            running = fingerprint.base_hash
    return prev_bases


def find_baseline_index(items: list[tuple[RawMessage, Fingerprint | None]]) -> int:
    """Index of the most recent deliverable row, or -1."""
    for idx in range(len(items) - 1, -1, -1):
        message, fingerprint = items[idx]
        if fingerprint is not None and message.incoming:
            return idx
    return -1


def _discard(index: dict, key: object, handle: int) -> None:
    handles = index.get(key)
    if handles is None:
        return
    try:
        handles.remove(handle)
    except ValueError:
        return
    if not handles:
        del index[key]


class Conversation:
    """Bounded, order-preserving message history for one chat."""

    def __init__(
        self,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        position_step: int = DEFAULT_POSITION_STEP,
    ) -> None:
        self.max_messages = max_messages
        self.position_step = position_step
        self.title: str | None = None
        self.is_group = False
        self.initialized = False
        self.next_sequence = 1
        self._entries: dict[int, MessageEntry] = {}
        self._next_handle = 0
        self._base_index: dict[str, list[int]] = {}
        self._content_index: dict[str, list[int]] = {}
        self._chain_index: dict[tuple[str, str], list[int]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> list[MessageEntry]:
        """Stored entries, oldest first."""
        return list(self._entries.values())

    def apply(
        self,
        chat_key: str,
        title: str | None,
        is_group: bool,
        messages: list[RawMessage],
        sink: DeliverySink | None = None,
    ) -> list[ReconciledMessage]:
        """Reconcile one snapshot's rows against history.

        The first pass over a conversation only delivers its most recent
        incoming row. Afterwards every incoming row that creates a new entry
        is delivered, synchronously and in row order.

        Args:
            chat_key: Conversation key
            title: Conversation title from the snapshot
            is_group: Whether the conversation is a group chat
            messages: Snapshot rows, oldest first
            sink: Receives each newly deliverable row

        Returns:
            One ReconciledMessage per input row, in input order
        """
        if not messages:
            return []
        if title and title.strip():
            self.title = title.strip()
        elif self.title is None:
            self.title = chat_key
        self.is_group = is_group

        items = self._build_items(messages)
        prev_bases = compute_prev_bases([fp for _, fp in items])
        baseline = not self.initialized
        baseline_index = find_baseline_index(items) if baseline else -1
        claimed: set[int] = set()
        results: list[ReconciledMessage] = []

        try:
            for idx, (message, fingerprint) in enumerate(items):
                if fingerprint is None:
                    results.append(ReconciledMessage(message=message))
                    continue

                entry = self.find_match(prev_bases[idx], fingerprint, claimed)
                duplicate = entry is not None
                if entry is not None:
                    self._apply_match(entry, fingerprint)
                else:
                    entry = self._append_entry(fingerprint, prev_bases[idx])
                claimed.add(entry.handle)

                if baseline:
                    deliver = idx == baseline_index
                else:
                    deliver = not duplicate and message.incoming

                out = ReconciledMessage(
                    message=message,
                    id=entry.id,
                    sequence=entry.sequence,
                    hidden=not deliver,
                    duplicate=duplicate,
                    delivered=deliver,
                )
                results.append(out)
                if deliver and sink is not None:
                    sink.deliver(chat_key, self.title, self.is_group, out)
        finally:
            # Stored rows stay trimmed and baselined even if the sink raised
            evicted = self.trim()
            if evicted:
                logger.debug("Trimmed history: chat=%s evicted=%d", chat_key, evicted)
            self.initialized = True
        return results

    def match_stats(self, messages: list[RawMessage]) -> MatchStats:
        """Count deliverable rows that do (matched) and do not (gap) resolve to history.

        Read-only: no entry or index is modified.
        """
        if not messages:
            return MatchStats()
        items = self._build_items(messages)
        prev_bases = compute_prev_bases([fp for _, fp in items])
        claimed: set[int] = set()
        matched = 0
        gap = 0
        for idx, (message, fingerprint) in enumerate(items):
            if fingerprint is None or not message.incoming:
                continue
            hit = self.find_match(prev_bases[idx], fingerprint, claimed)
            if hit is not None:
                claimed.add(hit.handle)
                matched += 1
            else:
                gap += 1
        return MatchStats(matched=matched, gap=gap)

    def find_match(
        self,
        prev_base: str,
        fingerprint: Fingerprint,
        claimed: set[int],
    ) -> MessageEntry | None:
        """Find the existing entry a fingerprint resolves to.

        Tries, in order: chain (adjacency) match, content match, then base
        match with a position tie-break. Entries in `claimed` are skipped.
        """
        chain = self._chain_index.get((prev_base, fingerprint.base_hash), ())
        hit = next(self._compatible(chain, fingerprint, claimed), None)
        if hit is not None:
            return hit

        content = self._content_index.get(fingerprint.content_hash, ())
        hit = next(self._compatible(content, fingerprint, claimed), None)
        if hit is not None:
            return hit

        candidates = list(self._compatible(self._base_index.get(fingerprint.base_hash, ()), fingerprint, claimed))
        if not candidates:
            return None
        for entry in candidates:
            if matches_pos(entry.pos_hash, fingerprint.pos_hash):
                return entry
        return candidates[0]

    def trim(self) -> int:
        """Evict the oldest entries beyond the cap. Returns the number evicted."""
        evicted = 0
        while len(self._entries) > self.max_messages:
            handle = next(iter(self._entries))
            entry = self._entries.pop(handle)
            _discard(self._base_index, entry.base_hash, handle)
            _discard(self._chain_index, (entry.prev_base_hash, entry.base_hash), handle)
            for content_hash in entry.content_hashes:
                _discard(self._content_index, content_hash, handle)
            evicted += 1
        return evicted

    def check_integrity(self) -> list[str]:
        """Describe any disagreement between the indexes and the arena."""
        problems = []
        indexes: list[tuple[str, dict]] = [
            ("base", self._base_index),
            ("content", self._content_index),
            ("chain", self._chain_index),
        ]
        for name, index in indexes:
            for key, handles in index.items():
                if not handles:
                    problems.append(f"{name} index has empty bucket {key!r}")
                for handle in handles:
                    if handle not in self._entries:
                        problems.append(f"{name} index references evicted handle {handle}")
        for handle, entry in self._entries.items():
            if handle not in self._base_index.get(entry.base_hash, ()):
                problems.append(f"entry {entry.id} missing from base index")
            if handle not in self._chain_index.get((entry.prev_base_hash, entry.base_hash), ()):
                problems.append(f"entry {entry.id} missing from chain index")
            for content_hash in entry.content_hashes:
                if handle not in self._content_index.get(content_hash, ()):
                    problems.append(f"entry {entry.id} missing from content index")
        return problems

    def to_record(self, chat_key: str) -> ConversationRecord:
        return ConversationRecord(
            chat_key=chat_key,
            title=self.title,
            is_group=self.is_group,
            next_sequence=self.next_sequence,
            entries=[replace(e, content_hashes=list(e.content_hashes)) for e in self._entries.values()],
        )

    @classmethod
    def from_record(
        cls,
        record: ConversationRecord,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        position_step: int = DEFAULT_POSITION_STEP,
    ) -> "Conversation":
        """Rebuild a conversation and its indexes from durable state.

        A restored conversation counts as initialized, so it does not run
        another baseline pass.
        """
        conversation = cls(max_messages=max_messages, position_step=position_step)
        conversation.title = record.title
        conversation.is_group = record.is_group
        for stored in sorted(record.entries, key=lambda e: e.sequence):
            entry = replace(stored, handle=conversation._next_handle, content_hashes=[])
            conversation._next_handle += 1
            conversation._insert(entry)
            for content_hash in stored.content_hashes:
                conversation._register_alias(entry, content_hash)
        last_sequence = max((e.sequence for e in record.entries), default=0)
        conversation.next_sequence = max(record.next_sequence, last_sequence + 1)
        conversation.initialized = True
        conversation.trim()
        return conversation

    def _build_items(self, messages: list[RawMessage]) -> list[tuple[RawMessage, Fingerprint | None]]:
        return [(m, fingerprint_message(m, self.position_step)) for m in messages]

    def _compatible(
        self,
        handles: Iterable[int],
        fingerprint: Fingerprint,
        claimed: set[int],
    ) -> Iterator[MessageEntry]:
        for handle in handles:
            if handle in claimed:
                continue
            entry = self._entries[handle]
            if matches_sender(entry.sender_key, fingerprint.sender_key):
                yield entry

    def _apply_match(self, entry: MessageEntry, fingerprint: Fingerprint) -> None:
        # Sender attribution can lag behind the row content
        if not entry.sender_key and fingerprint.sender_key:
            entry.sender_key = fingerprint.sender_key
        self._register_alias(entry, fingerprint.content_hash)

    def _append_entry(self, fingerprint: Fingerprint, prev_base: str) -> MessageEntry:
        entry = MessageEntry(
            handle=self._next_handle,
            id=build_stable_id(),
            sequence=self.next_sequence,
            base_hash=fingerprint.base_hash,
            prev_base_hash=prev_base,
            sender_key=fingerprint.sender_key,
            pos_hash=fingerprint.pos_hash,
        )
        self._next_handle += 1
        self.next_sequence += 1
        self._insert(entry)
        self._register_alias(entry, fingerprint.content_hash)
        return entry

    def _insert(self, entry: MessageEntry) -> None:
        self._entries[entry.handle] = entry
        self._base_index.setdefault(entry.base_hash, []).append(entry.handle)
        self._chain_index.setdefault((entry.prev_base_hash, entry.base_hash), []).append(entry.handle)

    def _register_alias(self, entry: MessageEntry, content_hash: str) -> None:
        if content_hash in entry.content_hashes:
            return
        entry.content_hashes.append(content_hash)
        self._content_index.setdefault(content_hash, []).append(entry.handle)
