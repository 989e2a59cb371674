from __future__ import annotations

import logging
import time
from collections.abc import Callable

from variantkit.core.models import ElementDatabase

log = logging.getLogger(__name__)


class ElementDatabaseCache:
    """Bounded cache of recent element database captures keyed by page.

    Entries expire after the TTL; when full, the entry inserted first is
    evicted.
    """

    def __init__(self, ttl_seconds: float = 60.0, max_entries: int = 16, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.clock = clock
        self._entries: dict[str, tuple[float, ElementDatabase]] = {}

    def get(self, key: str) -> ElementDatabase | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, database = entry
        if self.clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return database

    def put(self, key: str, database: ElementDatabase) -> None:
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries:
            evicted = next(iter(self._entries))
            del self._entries[evicted]
            log.debug("Evicted element database for %s", evicted)
        self._entries[key] = (self.clock(), database)

    def invalidate(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
