"""
In-process cache of session-held identity metadata.

Lets a caller see their new plan right after an upgrade without waiting for
the next full refresh from the stores. Never a source of truth.
"""
from __future__ import annotations

import threading
import time
from typing import Any, Dict, Mapping, Optional, Tuple

from plansync.core.config import settings


class SessionCache:
    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            expires_at, values = entry
            if expires_at < time.monotonic():
                del self._entries[user_id]
                return None
            return dict(values)

    def put(self, user_id: str, values: Mapping[str, Any]) -> None:
        with self._lock:
            self._entries[user_id] = (time.monotonic() + self.ttl_seconds, dict(values))

    def patch(self, user_id: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge values into the user's entry (creating it) and refresh its TTL."""
        with self._lock:
            entry = self._entries.get(user_id)
            current = dict(entry[1]) if entry and entry[0] >= time.monotonic() else {}
            current.update(values)
            self._entries[user_id] = (time.monotonic() + self.ttl_seconds, current)
            return dict(current)

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)


session_cache = SessionCache(ttl_seconds=settings.PLAN_SESSION_CACHE_TTL_SECONDS)
