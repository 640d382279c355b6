"""Scroll controller deciding when to fetch more chat history.

After each poll of a chat screen the controller may scroll toward the latest
message, and, when the visible window shares nothing with stored history,
scroll back up looking for an anchor. Both loops are bounded and only stop
between gestures.
"""

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from chat_siphon.config import ScrollConfig
from chat_siphon.history.fingerprint import row_key
from chat_siphon.history.store import HistoryEngine
from chat_siphon.logging import get_logger
from chat_siphon.models import Snapshot

logger = get_logger("scroll")


class ChatScreen(ABC):
    """Gesture layer driving the chat list on screen."""

    @abstractmethod
    def swipe_toward_latest(self) -> bool:
        """Scroll one page toward newer messages. False if the UI did not respond."""

    @abstractmethod
    def swipe_toward_older(self) -> bool:
        """Scroll one page toward older messages. False if the UI did not respond."""

    @abstractmethod
    def refresh(self, fallback: Snapshot) -> Snapshot:
        """Re-sample the chat, returning fallback if nothing could be read."""


class ScrollPhase(str, Enum):
    IDLE = "idle"
    SCROLLING_DOWN = "scrolling_down"
    SCROLLING_UP = "scrolling_up"


@dataclass
class ScrollState:
    """Per-conversation scroll bookkeeping. Timestamps come from the controller clock."""

    phase: ScrollPhase = ScrollPhase.IDLE
    busy: bool = False
    last_down_at: float | None = None
    last_down_sig: str | None = None
    last_down_no_change_at: float | None = None
    last_up_at: float | None = None
    last_up_sig: str | None = None


@dataclass
class ScrollResult:
    snapshot: Snapshot
    anchor_found: bool = False
    steps: int = 0


def snapshot_signature(snapshot: Snapshot | None) -> str | None:
    """Signature "<oldest row>|<newest row>|<count>", or None for no rows."""
    if snapshot is None or not snapshot.messages:
        return None
    messages = snapshot.messages
    return f"{row_key(messages[0])}|{row_key(messages[-1])}|{len(messages)}"


class ScrollController:
    """Decides and performs bounded scrolls for each polled chat snapshot."""

    def __init__(
        self,
        engine: HistoryEngine,
        screen: ChatScreen,
        config: ScrollConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            engine: History engine providing match statistics
            screen: Gesture layer for the chat list
            config: Step budgets and cooldowns (defaults if omitted)
            clock: Monotonic clock in seconds
            sleep: Sleep function used between gestures
            should_stop: Checked between gestures; True aborts the loop
        """
        self.engine = engine
        self.screen = screen
        self.config = config or ScrollConfig()
        self._clock = clock
        self._sleep = sleep
        self._should_stop = should_stop
        self._states: dict[str, ScrollState] = {}
        self._claim_lock = threading.Lock()
        self._current_chat: str | None = None

    def state_for(self, chat_key: str) -> ScrollState:
        state = self._states.get(chat_key)
        if state is None:
            state = self._states.setdefault(chat_key, ScrollState())
        return state

    def settle(self, snapshot: Snapshot, allow_scroll: bool = True) -> Snapshot:
        """Scroll as needed and return the best snapshot to reconcile.

        Scrolling happens when allowed, or whenever the chat was just
        entered. A conversation already being scrolled is left alone.

        Args:
            snapshot: The freshly polled snapshot
            allow_scroll: Whether scrolling is currently permitted

        Returns:
            The last snapshot obtained, or the input if nothing was done
        """
        chat_key = snapshot.chat_key
        if not snapshot.is_chat or chat_key is None:
            self._current_chat = None
            return snapshot

        just_entered = self._current_chat != chat_key
        self._current_chat = chat_key
        if not (allow_scroll or just_entered):
            return snapshot

        state = self.state_for(chat_key)
        if not self._claim(state):
            logger.debug("Scroll already in progress: chat=%s", chat_key)
            return snapshot

        has_context = self.engine.has_conversation(chat_key)
        working = snapshot
        try:
            if self.should_scroll_down(chat_key, snapshot_signature(working)):
                state.phase = ScrollPhase.SCROLLING_DOWN
                working = self.scroll_to_latest(working, chat_key).snapshot

            if has_context:
                stats = self.engine.match_stats(chat_key, working.messages)
                if (
                    stats.matched == 0
                    and stats.gap > 0
                    and self.should_scroll_up(chat_key, snapshot_signature(working))
                ):
                    state.phase = ScrollPhase.SCROLLING_UP
                    max_steps = min(stats.gap, self.config.max_up_steps)
                    logger.info("History gap detected: chat=%s gap=%d max_steps=%d", chat_key, stats.gap, max_steps)
                    result = self.scroll_for_anchor(working, chat_key, max_steps)
                    working = result.snapshot
        finally:
            state.phase = ScrollPhase.IDLE
            state.busy = False

        return working

    def should_scroll_down(self, chat_key: str, sig: str | None) -> bool:
        """Check the down-scroll cooldowns for a snapshot signature."""
        if not sig:
            return False
        state = self.state_for(chat_key)
        if state.last_down_sig != sig:
            return True
        if self._within(state.last_down_no_change_at, self.config.no_change_cooldown_seconds):
            return False
        if self._within(state.last_down_at, self.config.cooldown_seconds):
            return False
        return True

    def should_scroll_up(self, chat_key: str, sig: str | None) -> bool:
        if not sig:
            return False
        state = self.state_for(chat_key)
        if state.last_up_sig == sig and self._within(state.last_up_at, self.config.cooldown_seconds):
            return False
        return True

    def scroll_to_latest(self, snapshot: Snapshot, chat_key: str) -> ScrollResult:
        """Swipe toward the newest message until the view stops changing.

        At most `max_down_steps` productive swipes are made; the first swipe
        that does not change the signature ends the loop.
        """
        state = self.state_for(chat_key)
        current = snapshot
        last_sig = snapshot_signature(current)
        state.last_down_at = self._clock()
        state.last_down_sig = last_sig
        productive = 0
        swipes = 0

        while productive < self.config.max_down_steps:
            if self._stop_requested():
                break
            if not self.screen.swipe_toward_latest():
                logger.debug("Swipe toward latest not performed: chat=%s", chat_key)
                break
            swipes += 1
            self._sleep(self.config.step_delay_seconds)
            refreshed = self.screen.refresh(current)
            sig = snapshot_signature(refreshed)
            if sig is not None:
                current = refreshed
            if sig is None or sig == last_sig:
                state.last_down_no_change_at = self._clock()
                state.last_down_sig = sig or last_sig
                break
            last_sig = sig
            state.last_down_sig = sig
            productive += 1

        logger.debug("Scrolled toward latest: chat=%s swipes=%d productive=%d", chat_key, swipes, productive)
        return ScrollResult(snapshot=current, steps=swipes)

    def scroll_for_anchor(self, snapshot: Snapshot, chat_key: str, max_steps: int) -> ScrollResult:
        """Swipe toward older messages until a row matches history.

        Stops on an anchor, when the view stops changing, when nothing
        deliverable remains unmatched, or after `max_steps` swipes.
        """
        state = self.state_for(chat_key)
        current = snapshot
        last_sig = snapshot_signature(current)
        state.last_up_at = self._clock()
        state.last_up_sig = last_sig
        swipes = 0
        anchor_found = False

        while swipes < max_steps:
            if self._stop_requested():
                break
            if not self.screen.swipe_toward_older():
                logger.debug("Swipe toward older not performed: chat=%s", chat_key)
                break
            swipes += 1
            self._sleep(self.config.step_delay_seconds)
            refreshed = self.screen.refresh(current)
            sig = snapshot_signature(refreshed)
            if sig is None:
                break
            current = refreshed
            if sig == last_sig:
                break
            stats = self.engine.match_stats(chat_key, current.messages)
            if stats.matched > 0:
                anchor_found = True
                break
            if stats.gap == 0:
                break
            last_sig = sig
            state.last_up_sig = sig

        logger.info("Scrolled toward older: chat=%s swipes=%d anchor=%s", chat_key, swipes, anchor_found)
        return ScrollResult(snapshot=current, anchor_found=anchor_found, steps=swipes)

    def _claim(self, state: ScrollState) -> bool:
        with self._claim_lock:
            if state.busy:
                return False
            state.busy = True
            return True

    def _within(self, ts: float | None, window: float) -> bool:
        return ts is not None and self._clock() - ts < window

    def _stop_requested(self) -> bool:
        return self._should_stop is not None and self._should_stop()
