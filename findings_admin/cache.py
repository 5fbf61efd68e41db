"""
Effective Index Cache
=====================

Process-wide cache for resolved effective indexes.

Entries are keyed by the ledger revision read from the store, so a committed
ledger change is never served stale. Storing an entry drops every entry built
at another revision, and the cache never holds more than MAX_ENTRIES scopes
(oldest evicted first). Mutating operations also call `invalidate()` to drop
entries that are already superseded.
"""

import logging
from typing import Any, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

MAX_ENTRIES = 32


class EffectiveCache:
    """Revision-aware cache, one entry per scope key"""

    def __init__(self, max_entries: int = MAX_ENTRIES):
        self.max_entries = max_entries
        self._entries: Dict[Hashable, Tuple[Hashable, Any]] = {}

    def get(self, key: Hashable, revision: Hashable) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        cached_revision, value = entry
        if cached_revision != revision:
            return None
        return value

    def set(self, key: Hashable, revision: Hashable, value: Any) -> None:
        stale = [k for k, (cached_revision, _) in self._entries.items() if cached_revision != revision]
        for k in stale:
            del self._entries[k]

        self._entries.pop(key, None)
        self._entries[key] = (revision, value)

        while len(self._entries) > self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            logger.debug(f"Effective cache full; evicted {oldest}")

    def invalidate(self) -> None:
        dropped = len(self._entries)
        self._entries.clear()
        if dropped:
            logger.debug(f"Effective cache invalidated ({dropped} entries)")

    def __len__(self) -> int:
        return len(self._entries)


_effective_cache = EffectiveCache()


def get_effective_cache() -> EffectiveCache:
    return _effective_cache


def invalidate_effective_cache() -> None:
    """Clear the effective index cache (call after any ledger mutation)."""
    _effective_cache.invalidate()
