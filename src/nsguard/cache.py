from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from .doh_client import NSLookupResult

""" TTLCache where each entry has its own TTL, plus the NS answer cache. """

logger = logging.getLogger(__name__)

DEFAULT_ANSWER_TTL_SECONDS = 300


class TTLCache:
    """
    Thread-safe in-memory cache with one Time-To-Live (TTL) for every entry.

    Inputs:
        ttl_seconds: Lifetime of every entry, in seconds.
        clock: Callable returning monotonic seconds (injectable for tests).
    Outputs:
        TTLCache instance

    Notes:
        All dictionary operations are synchronized with an RLock.
        Entries are stored as (stored_at, value) and are readable only
        while now - stored_at < ttl_seconds. Expired entries are purged
        opportunistically in get() and set().

    Example use:
        >>> cache = TTLCache(ttl_seconds=60)
        >>> cache.set("example.com", b"data")
        >>> cache.get("example.com")
        b'data'
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_ANSWER_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._store: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.RLock()

    def get(self, key: Hashable) -> Any | None:
        """
        Retrieves an item from the cache.
        Returns the item if it exists and has not expired.

        Inputs:
            key: The key to retrieve.

        Outputs:
            The cached value, or None if the key is not found or has expired.
        """
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if not entry:
                return None
            stored_at, data = entry
            if now - stored_at >= self.ttl_seconds:
                self._store.pop(key, None)
                return None
            return data

    def set(self, key: Hashable, data: Any) -> None:
        """
        Adds an item to the cache, replacing any previous entry atomically.

        Inputs:
            key: The key to store the value under.
            data: The value to store.
        Outputs:
            None
        """
        now = self._clock()
        with self._lock:
            self._store[key] = (now, data)
            # Opportunistic cleanup
            self._purge_expired_locked(now=now)

    def purge_expired(self) -> int:
        """Remove all expired entries.

        Inputs:
            None
        Outputs:
            Number of entries removed.
        """
        with self._lock:
            return self._purge_expired_locked(now=self._clock())

    def _purge_expired_locked(self, now: float) -> int:
        removed = 0
        # Iterate on a list of items to avoid runtime dict size change issues
        for k, (stored_at, _) in list(self._store.items()):
            if now - stored_at >= self.ttl_seconds:
                del self._store[k]
                removed += 1
        return removed

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class AnswerCache:
    """Brief: Time-bounded cache of NS lookups in front of a DoH client.

    Inputs:
      - client: Object exposing lookup_ns(name) -> NSLookupResult.
      - ttl_seconds: Lifetime of each cached answer (default 300).
      - clock: Optional clock forwarded to the underlying TTLCache.

    Outputs:
      - AnswerCache instance.

    Notes:
      - Empty results are cached exactly like populated ones so repeated
        failures are throttled by the same TTL.
      - Lookups run outside the cache lock; two concurrent misses for one name
        may both reach the network, and the later put() wins.

    Example use:
        >>> from nsguard.doh_client import NSLookupResult
        >>> class Fake:
        ...     def lookup_ns(self, name):
        ...         return NSLookupResult(servers=frozenset({"ns1.example.net"}))
        >>> answers = AnswerCache(Fake())
        >>> sorted(answers.resolve("example.com").servers)
        ['ns1.example.net']
    """

    def __init__(
        self,
        client: Any,
        ttl_seconds: float = DEFAULT_ANSWER_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._cache = TTLCache(ttl_seconds, clock=clock)
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def client(self) -> Any:
        return self._client

    def get(self, name: str) -> Optional[NSLookupResult]:
        return self._cache.get(name)

    def put(self, name: str, result: NSLookupResult) -> None:
        self._cache.set(name, result)

    def resolve(self, name: str) -> NSLookupResult:
        """Brief: Return a cached answer for name or look it up and cache it.

        Inputs:
          - name: hostname to resolve NS records for.

        Outputs:
          - NSLookupResult (never None).
        """
        cached = self.get(name)
        if cached is not None:
            with self._stats_lock:
                self._hits += 1
            logger.debug("Using cached NS answer for %s", name)
            return cached

        with self._stats_lock:
            self._misses += 1
        result = self._client.lookup_ns(name)
        self.put(name, result)
        return result

    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "entries": len(self._cache),
            }

    def clear(self) -> None:
        self._cache.clear()
