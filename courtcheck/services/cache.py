"""Short-lived read cache for facility reference data.

Only reference lists go through here. Check-in evaluation always reads
sessions and blocks fresh from the store.
"""

import threading
import time


class TimedCache:

    def __init__(self, ttl_seconds=300, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self.clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key, value):
        with self._lock:
            now = self.clock()
            # Keys are unbounded (location, radius); drop expired ones on write.
            expired = [k for k, (stored_at, _) in self._entries.items()
                       if now - stored_at >= self.ttl_seconds]
            for stale_key in expired:
                del self._entries[stale_key]
            self._entries[key] = (now, value)

    def get_or_load(self, key, loader):
        value = self.get(key)
        if value is None:
            value = loader()
            self.set(key, value)
        return value

    def invalidate(self, key=None):
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)


def location_key(prefix, lat, lng, precision=2):
    """Cache key for a location, rounded so nearby lookups share an entry."""
    if lat is None or lng is None:
        return f'{prefix}:any'
    return f'{prefix}:{round(lat, precision)}:{round(lng, precision)}'
