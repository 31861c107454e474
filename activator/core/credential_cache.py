"""
Cache of short-lived credentials (proxy auth, bearer tokens) keyed by scope.

Eviction is lazy: an expired entry is removed by the lookup that finds it.
There is no background thread.

Refresh discipline: on a miss, get_or_refresh() takes a per-scope asyncio
lock, re-checks the cache, and only then calls the refresh function, so at
most one refresh per scope is in flight at any time.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

PROXY_SCOPE = "proxy"
BEARER_SCOPE = "bearer"


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class CredentialCache:
    """
    Scope-keyed credential cache.

    The entry map is guarded by a threading.Lock so reads and writes are safe
    from any task or thread; refreshes are serialized per scope with asyncio locks.

    Args:
        clock: Monotonic time source in seconds (injectable for tests)
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._refresh_locks: Dict[str, asyncio.Lock] = {}

    def now(self) -> float:
        return self._clock()

    def get(self, scope: str) -> Optional[Any]:
        """Return the cached credential for `scope` if it has not expired."""
        with self._lock:
            entry = self._entries.get(scope)
            if entry is None:
                return None
            if not entry.is_valid(self._clock()):
                del self._entries[scope]
                return None
            return entry.value

    def put(self, scope: str, credential: Any, expires_at: float) -> None:
        """Store or overwrite the credential for `scope` until `expires_at` (clock time)."""
        with self._lock:
            self._entries[scope] = CacheEntry(credential, expires_at)

    def put_for(self, scope: str, credential: Any, ttl: float) -> None:
        self.put(scope, credential, self._clock() + ttl)

    def invalidate(self, scope: str) -> bool:
        """Drop the entry for `scope`. Returns True if one was present."""
        with self._lock:
            removed = self._entries.pop(scope, None) is not None
        if removed:
            logger.info("Credential cache invalidated: scope=%s", scope)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _refresh_lock(self, scope: str) -> asyncio.Lock:
        with self._lock:
            lock = self._refresh_locks.get(scope)
            if lock is None:
                lock = asyncio.Lock()
                self._refresh_locks[scope] = lock
            return lock

    async def get_or_refresh(
        self,
        scope: str,
        refresh: Callable[[], Awaitable[Tuple[Any, float]]],
    ) -> Any:
        """
        Return the cached credential, refreshing it on a miss.

        Args:
            scope: Credential scope
            refresh: Coroutine function returning (credential, ttl_seconds)

        Returns:
            The cached or freshly fetched credential

        Raises:
            Whatever `refresh` raises; nothing is cached in that case
        """
        cached = self.get(scope)
        if cached is not None:
            return cached

        async with self._refresh_lock(scope):
            cached = self.get(scope)
            if cached is not None:
                return cached

            credential, ttl = await refresh()
            self.put_for(scope, credential, ttl)
            logger.info("Credential cache refreshed: scope=%s ttl=%.0fs", scope, ttl)
            return credential
