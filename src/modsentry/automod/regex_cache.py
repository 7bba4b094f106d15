"""
Bounded memoization of compiled regular expressions.

One cache is created per rule evaluator and injected into the filter
functions, so tests and separate engines never share compiled state.

Patterns are compiled with the third-party ``regex`` engine so every match
can carry a timeout. Rule patterns come from moderators and the content
from any user; a runaway backtracking match is abandoned after
``match_timeout`` seconds instead of stalling the event loop.
"""

from __future__ import annotations

import threading
from typing import Any, Dict

import regex

from modsentry.util.logger import get_logger

logger = get_logger("regex_cache")

DEFAULT_MAX_SIZE = 1000
DEFAULT_MATCH_TIMEOUT = 0.1


class RegexCache:
    """
    Pattern string to compiled ``regex.Pattern`` cache with a size cap.

    Lookups are lock-free dict reads. A miss compiles outside the lock and
    inserts under ``_lock`` only while the cache is below ``max_size``. Once
    full, callers still get a freshly compiled pattern for that call; only
    the memoization is skipped.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE, match_timeout: float = DEFAULT_MATCH_TIMEOUT) -> None:
        self._patterns: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self.max_size = max_size
        self.match_timeout = match_timeout

    def get(self, pattern: str) -> Any | None:
        """Return the compiled pattern, or None if ``pattern`` does not compile."""
        compiled = self._patterns.get(pattern)
        if compiled is not None:
            return compiled

        try:
            compiled = regex.compile(pattern)
        except (regex.error, RecursionError, OverflowError) as exc:
            logger.debug("[REGEX CACHE] Skipping invalid pattern %r: %s", pattern, exc)
            return None

        with self._lock:
            if pattern not in self._patterns and len(self._patterns) < self.max_size:
                self._patterns[pattern] = compiled
        return compiled

    def search(self, pattern: str, text: str) -> bool:
        """
        Report whether ``pattern`` matches anywhere in ``text``.

        Invalid patterns and matches that exceed ``match_timeout`` both count
        as no match. A timeout is logged at WARNING with the offending pattern.
        """
        compiled = self.get(pattern)
        if compiled is None:
            return False
        try:
            return compiled.search(text, timeout=self.match_timeout) is not None
        except TimeoutError:
            logger.warning(
                "[REGEX CACHE] Pattern %r exceeded %.3fs on a %d-character message; treated as no match",
                pattern,
                self.match_timeout,
                len(text),
            )
            return False

    def __len__(self) -> int:
        return len(self._patterns)

    def __contains__(self, pattern: object) -> bool:
        return pattern in self._patterns

    def clear(self) -> None:
        with self._lock:
            self._patterns.clear()
