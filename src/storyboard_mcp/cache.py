"""In-memory prompt cache with TTL and insertion-order eviction.

Maps a (prompt, size, model) fingerprint to a previously generated
artifact. Absence is always ``None``; nothing here raises for a miss.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .models.generation import CacheStats, ModelKind

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_ENTRIES = 100


@dataclass
class CacheEntry:
    """A cached artifact for one prompt fingerprint."""

    key: str
    prompt: str
    artifact: str
    model: str
    size: str
    created_at: datetime
    expires_at: datetime
    kind: ModelKind = ModelKind.CUSTOM
    hit_count: int = 0


class PromptCache:
    """Bounded, TTL-bound artifact cache shared by concurrent generations.

    Every read and write runs under one lock. Reads bump hit counts and
    drop expired entries, so they mutate too; capacity eviction must never
    interleave with another insert.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_entries = max_entries
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(prompt: str, size: str, model: str) -> str:
        """Fingerprint ``(prompt, size, model)``. Exact match only, no normalisation."""
        raw = "\x1f".join((model, size, prompt))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def get(self, key: str) -> CacheEntry | None:
        """Return the live entry for *key*, counting the hit, or None if missing/expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= datetime.now(timezone.utc):
                del self._entries[key]
                logger.debug("Prompt cache expired: %s", key[:12])
                return None
            entry.hit_count += 1
            logger.debug("Prompt cache hit: %s (hits=%d)", key[:12], entry.hit_count)
            return entry

    def put(
        self,
        key: str,
        prompt: str,
        artifact: str,
        model: str,
        size: str,
        kind: ModelKind = ModelKind.CUSTOM,
    ) -> CacheEntry:
        """Insert an entry, evicting the oldest-inserted one when full."""
        now = datetime.now(timezone.utc)
        entry = CacheEntry(
            key=key,
            prompt=prompt,
            artifact=artifact,
            model=model,
            size=size,
            kind=kind,
            created_at=now,
            expires_at=now + self._ttl,
        )
        with self._lock:
            # Re-inserting moves the key to the newest position.
            self._entries.pop(key, None)
            while len(self._entries) >= self._max_entries:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                logger.debug("Prompt cache evicted: %s", oldest[:12])
            self._entries[key] = entry
        logger.info("Cached artifact for %s (model=%s, size=%s)", key[:12], model, size)
        return entry

    def clear(self) -> int:
        """Drop all entries. Returns count removed."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def stats(self) -> CacheStats:
        """Return occupancy, cumulative hits and artifact bytes held."""
        with self._lock:
            entries = list(self._entries.values())
        return CacheStats(
            size=len(entries),
            capacity=self._max_entries,
            hits=sum(e.hit_count for e in entries),
            total_bytes=sum(len(e.artifact) for e in entries),
            ttl_seconds=int(self._ttl.total_seconds()),
        )

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and entry.expires_at > datetime.now(timezone.utc)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
