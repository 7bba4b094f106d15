"""
Sliding-window spam detection per (user, channel).

The tracker is the only shared mutable state in the moderation pipeline.
A single lock guards the whole history map; every operation is synchronous
and short, so the lock is never held across an ``await``. State is kept in
memory only and is rebuilt from live traffic after a restart.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Tuple

from modsentry.datatypes.automod_datatypes import SpamFilterConfig
from modsentry.util.logger import get_logger

logger = get_logger("spam_tracker")

RATE_EXCEEDED = "message rate exceeded"
DUPLICATE_SPAM = "duplicate message spam"


@dataclass(frozen=True, slots=True)
class SpamEntry:
    """One remembered message: its content and when it was seen."""
    content: str
    timestamp: float


def _prune(entries: Deque[SpamEntry], cutoff: float) -> None:
    # Entries are appended in clock order, so stale ones sit at the left
    while entries and entries[0].timestamp < cutoff:
        entries.popleft()


class SpamTracker:
    """
    Tracks recent messages per ``"{user_id}:{channel_id}"`` key.

    ``check`` prunes and extends only the key it is asked about; ``cleanup``
    sweeps every key and is meant to run on a timer so idle keys do not
    accumulate.

    Args:
        clock: Monotonic time source in seconds, injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._history: Dict[str, Deque[SpamEntry]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    @staticmethod
    def make_key(user_id: str, channel_id: str) -> str:
        return f"{user_id}:{channel_id}"

    def check(self, user_id: str, channel_id: str, content: str, config: SpamFilterConfig) -> Tuple[bool, str]:
        """Record the message and report whether it breaks the rate or duplicate limits.

        The rate limit is checked first; the duplicate check only runs when
        the rate is within bounds.
        """
        key = self.make_key(user_id, channel_id)

        with self._lock:
            now = self._clock()
            entries = self._history.setdefault(key, deque())
            _prune(entries, now - config.window_seconds)
            entries.append(SpamEntry(content=content, timestamp=now))

            if len(entries) > config.max_messages:
                return True, RATE_EXCEEDED

            lowered = content.lower()
            duplicates = sum(1 for entry in entries if entry.content.lower() == lowered)
            if duplicates > config.max_duplicates:
                return True, DUPLICATE_SPAM

        return False, ""

    def cleanup(self, max_age: float) -> int:
        """Evict entries older than ``max_age`` seconds from every key.

        Keys left without entries are removed. Returns the number of keys
        removed.
        """
        removed_keys = 0
        with self._lock:
            cutoff = self._clock() - max_age
            for key in list(self._history):
                entries = self._history[key]
                _prune(entries, cutoff)
                if not entries:
                    del self._history[key]
                    removed_keys += 1
            remaining = len(self._history)

        logger.debug("[SPAM TRACKER] Cleanup removed %d idle keys, %d remain", removed_keys, remaining)
        return removed_keys

    def entries(self, user_id: str, channel_id: str) -> List[SpamEntry]:
        """Snapshot of the retained window for one key, oldest first."""
        with self._lock:
            return list(self._history.get(self.make_key(user_id, channel_id), ()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._history
