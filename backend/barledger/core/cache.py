"""
In-memory TTL cache for per-organization lookups (inventory settings).

One instance is created per process and handed to the services that need it
(see ``app.state.settings_cache``); nothing here is module-global.
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class SimpleCache:
    """Key -> (value, expires_at) map with a soft size cap."""

    MAX_ENTRIES = 10000

    def __init__(self, default_ttl_seconds: int = 300, clock: Callable[[], datetime] = datetime.now):
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, datetime]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _make_room(self):
        now = self._clock()
        for key in [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]:
            del self._entries[key]
        if len(self._entries) >= self.MAX_ENTRIES:
            # Dicts keep insertion order, so the head holds the oldest writes
            for key in list(self._entries)[: len(self._entries) - self.MAX_ENTRIES + 1]:
                del self._entries[key]

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None):
        if key not in self._entries and len(self._entries) >= self.MAX_ENTRIES:
            self._make_room()
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries.pop(key, None)
        self._entries[key] = (value, self._clock() + timedelta(seconds=ttl))

    def delete(self, key: str):
        self._entries.pop(key, None)

    def clear_prefix(self, prefix: str):
        """Drop every key starting with ``prefix`` (e.g. all organizations' settings)."""
        stale = [k for k in self._entries if k.startswith(prefix)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug(f"Cache cleared {len(stale)} keys with prefix {prefix!r}")

    def clear(self):
        self._entries.clear()
