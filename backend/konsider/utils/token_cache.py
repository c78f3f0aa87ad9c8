"""In-memory cache of live session tokens.

The cache mirrors the non-revoked rows of the `user_token` table as a set
of `(jti, user_id)` pairs so that most authenticated requests never touch
the database. `TokenCacheWorker` periodically drops cached tokens that
are no longer live in the database, picking up revocations made by other
processes. The refresh only ever removes entries, so a revocation that
lands while the snapshot is being read cannot be undone by it.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Callable, Iterable

_LOGGER = logging.getLogger("konsider.workers")

TokenKey = tuple[uuid.UUID, uuid.UUID]


class TokenCache:
    def __init__(self):
        self._tokens: set[TokenKey] = set()
        self._lock = threading.Lock()
        self._removals = 0

    @property
    def removals(self) -> int:
        """Number of removals so far; pass it back to `insert` as `since`."""
        with self._lock:
            return self._removals

    def insert(self, jti: uuid.UUID, user_id: uuid.UUID, since: int | None = None) -> bool:
        """Cache a token; skipped when anything was removed after `since`."""
        with self._lock:
            if since is not None and since != self._removals:
                return False
            self._tokens.add((jti, user_id))
            return True

    def remove(self, jti: uuid.UUID, user_id: uuid.UUID) -> None:
        with self._lock:
            self._removals += 1
            self._tokens.discard((jti, user_id))

    def remove_user(self, user_id: uuid.UUID) -> int:
        """Drop every token of `user_id`; returns how many were removed."""
        with self._lock:
            stale = {key for key in self._tokens if key[1] == user_id}
            self._removals += 1
            self._tokens -= stale
            return len(stale)

    def is_valid(self, jti: uuid.UUID, user_id: uuid.UUID) -> bool:
        with self._lock:
            return (jti, user_id) in self._tokens

    def retain(self, tokens: Iterable[TokenKey]) -> int:
        """Keep only cached tokens found in `tokens`; returns how many were dropped."""
        live = set(tokens)
        with self._lock:
            stale = self._tokens - live
            self._tokens -= stale
            if stale:
                self._removals += 1
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._removals += 1
            self._tokens.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


class TokenCacheWorker:
    """Daemon thread calling `refresh()` every `interval_seconds`.

    `refresh` must return the current live `(jti, user_id)` pairs; cached
    tokens missing from it are dropped. A failing refresh is logged and
    the previous cache content is kept.
    """

    def __init__(self, cache: TokenCache, refresh: Callable[[], Iterable[TokenKey]], interval_seconds: float):
        self._cache = cache
        self._refresh = refresh
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self) -> int:
        dropped = self._cache.retain(self._refresh())
        _LOGGER.info("token_cache_refreshed dropped=%d cached=%d", dropped, len(self._cache))
        return dropped

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                _LOGGER.exception("token_cache_refresh_failed")
            self._stop.wait(self._interval)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="token-cache-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
