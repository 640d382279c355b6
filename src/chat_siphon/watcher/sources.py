"""Snapshot sources feeding the watcher loop."""

import json
from abc import ABC, abstractmethod
from pathlib import Path

from chat_siphon.logging import get_logger
from chat_siphon.models import Snapshot

logger = get_logger("sources")


class SnapshotSource(ABC):
    """Produces one snapshot of the visible chat per poll."""

    @abstractmethod
    def poll(self) -> Snapshot | None:
        """Return the current snapshot, or None when nothing is available."""

    @property
    def exhausted(self) -> bool:
        """True when the source will never produce another snapshot."""
        return False


class JsonlReplaySource(SnapshotSource):
    """Replays recorded snapshots, one JSON object per line.

    Blank lines are skipped; malformed lines are logged and skipped.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._file = open(path, encoding="utf-8")
        self._line_no = 0
        self._done = False

    def poll(self) -> Snapshot | None:
        while not self._done:
            line = self._file.readline()
            if not line:
                self._done = True
                self._file.close()
                break
            self._line_no += 1
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed snapshot: path=%s line=%d", self._path.name, self._line_no)
                continue
            if not isinstance(data, dict):
                logger.warning("Skipping non-object snapshot: path=%s line=%d", self._path.name, self._line_no)
                continue
            return Snapshot.from_dict(data)
        return None

    @property
    def exhausted(self) -> bool:
        return self._done

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()
        self._done = True
