"""Per-user snapshot cache for the daily bar."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

DEFAULT_MAX_AGE_SECONDS = 60


class DailyBarCache:
    """Hold the last aggregation result per user until it ages out or is invalidated.

    ``get`` honours the max age; ``peek`` returns whatever is stored, stale or not,
    so a failed pass can fall back to the previous snapshot.
    """

    def __init__(
        self,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.max_age_seconds = max(0, int(max_age_seconds))
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: Dict[str, Tuple[datetime, Any]] = {}
        self._lock = threading.Lock()

    def init_app(self, app) -> None:
        try:
            value = int(app.config.get("DAILY_BAR_CACHE_MAX_AGE_SECONDS", DEFAULT_MAX_AGE_SECONDS))
        except (TypeError, ValueError):
            value = DEFAULT_MAX_AGE_SECONDS
        self.max_age_seconds = max(0, value)
        app.extensions["daily_bar_cache"] = self

    def get(self, user_id: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(user_id)
        if entry is None:
            return None
        stored_at, snapshot = entry
        if self._clock() - stored_at >= timedelta(seconds=self.max_age_seconds):
            return None
        return snapshot

    def peek(self, user_id: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(user_id)
        return entry[1] if entry else None

    def put(self, user_id: str, snapshot: Any) -> None:
        with self._lock:
            self._entries[user_id] = (self._clock(), snapshot)

    def invalidate(self, user_id: Optional[str] = None) -> None:
        """Drop one user's snapshot, or everything when no user is given."""
        with self._lock:
            if user_id is None:
                self._entries.clear()
            else:
                self._entries.pop(user_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
