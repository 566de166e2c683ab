"""
ratelimit.py - Per-key de-duplication for upsert-from-chain.

A repeated request for the same wallet within ``ttl`` seconds of the last
completed one, or while one is still in flight, is answered without doing
any work. The table is an LRU bounded to ``max_entries`` keys so a flood of
distinct addresses cannot grow it without limit.
"""

import time
from collections import OrderedDict
from typing import Callable, Optional

DEDUP_WINDOW_SEC = 5.0
MAX_TRACKED_KEYS = 1024

DEDUP = "dedup"
INFLIGHT = "inflight"


class UpsertGuard:
    def __init__(self, ttl: float = DEDUP_WINDOW_SEC, max_entries: int = MAX_TRACKED_KEYS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        # key -> finished-at timestamp, or None while in flight
        self._entries: "OrderedDict[str, Optional[float]]" = OrderedDict()

    def begin(self, key: str) -> Optional[str]:
        """Claim ``key``. Returns None when the caller should proceed,
        otherwise DEDUP or INFLIGHT."""
        key = key.lower()
        now = self._clock()
        if key in self._entries:
            finished_at = self._entries[key]
            if finished_at is None:
                return INFLIGHT
            if now - finished_at < self.ttl:
                return DEDUP
        self._entries[key] = None
        self._entries.move_to_end(key)
        self._evict()
        return None

    def finish(self, key: str):
        key = key.lower()
        self._entries[key] = self._clock()
        self._entries.move_to_end(key)
        self._evict()

    def _evict(self):
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)
