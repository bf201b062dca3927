import logging
import math
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from pydantic import ValidationError

try:
    from backend.app.schemas import ContentItem
except ModuleNotFoundError:
    from app.schemas import ContentItem


logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 60 * 30  # 30 minutes
SET_SEPARATOR = ","
FIELD_SEPARATOR = "_"


def fingerprint(
    countries: Iterable[str],
    platforms: Iterable[str],
    categories: Iterable[str],
    time_range: int,
    min_views: int,
) -> str:
    return FIELD_SEPARATOR.join(
        [
            SET_SEPARATOR.join(sorted(countries)),
            SET_SEPARATOR.join(sorted(platforms)),
            SET_SEPARATOR.join(sorted(categories)),
            str(time_range),
            str(min_views),
        ]
    )


class ResultCache:
    """
    Search results keyed by query fingerprint, persisted as one document of
    {fingerprint: {"timestamp": epoch_seconds, "data": [item, ...]}}.

    - get() drops an entry older than the TTL and reports a miss
    - put() drops every entry older than twice the TTL after writing
    """

    def __init__(self, store, ttl_seconds: int = CACHE_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._lock = threading.Lock()

    def _read(self) -> dict[str, Any]:
        document = self.store.get()
        return document if isinstance(document, dict) else {}

    def _is_expired(self, entry: Any, now: float, ttl: float) -> bool:
        if not isinstance(entry, dict):
            return True
        timestamp = entry.get("timestamp")
        if not isinstance(timestamp, (int, float)):
            return True
        return now - timestamp > ttl

    def get(self, key: str) -> list[ContentItem] | None:
        with self._lock:
            cache = self._read()
            entry = cache.get(key)
            if entry is None:
                return None

            if self._is_expired(entry, self.clock(), self.ttl_seconds):
                cache.pop(key, None)
                self.store.set(cache)
                logger.info("Cache expired: %s", key)
                return None

            data = entry.get("data") or []
            try:
                items = [ContentItem.model_validate(raw) for raw in data]
            except (ValidationError, TypeError) as exc:
                cache.pop(key, None)
                self.store.set(cache)
                logger.warning("Dropping unreadable cache entry %s: %s", key, exc)
                return None

        logger.info("Cache hit: %s", key)
        return items

    def put(self, key: str, items: list[ContentItem]) -> None:
        with self._lock:
            cache = self._read()
            now = self.clock()
            cache[key] = {
                "timestamp": now,
                "data": [item.to_json() for item in items],
            }
            self._sweep(cache, now)
            self.store.set(cache)
        logger.info("Cache stored: %s (%d items)", key, len(items))

    def _sweep(self, cache: dict[str, Any], now: float) -> int:
        stale = [key for key, entry in cache.items() if self._is_expired(entry, now, self.ttl_seconds * 2)]
        for key in stale:
            cache.pop(key, None)
        return len(stale)

    def sweep(self) -> int:
        with self._lock:
            cache = self._read()
            removed = self._sweep(cache, self.clock())
            if removed:
                self.store.set(cache)
        return removed

    def info(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._read().get(key)
        if not isinstance(entry, dict) or not isinstance(entry.get("timestamp"), (int, float)):
            return None

        age_seconds = max(0.0, self.clock() - entry["timestamp"])
        return {
            "ageMinutes": math.floor(age_seconds / 60),
            "remainingMinutes": max(0, math.ceil((self.ttl_seconds - age_seconds) / 60)),
            "expiresAt": datetime.fromtimestamp(entry["timestamp"] + self.ttl_seconds, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
        }

    def stats(self) -> dict[str, Any]:
        with self._lock:
            cache = self._read()
        now = self.clock()
        active_count = 0
        expired_count = 0
        total_items = 0
        for entry in cache.values():
            if self._is_expired(entry, now, self.ttl_seconds):
                expired_count += 1
            else:
                active_count += 1
            if isinstance(entry, dict):
                total_items += len(entry.get("data") or [])
        return {
            "activeCount": active_count,
            "expiredCount": expired_count,
            "totalItemCount": total_items,
            "keys": list(cache.keys()),
        }

    def clear(self) -> None:
        with self._lock:
            self.store.set({})
        logger.info("Cache cleared")
