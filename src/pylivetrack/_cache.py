"""Internal time-to-live cache with in-flight request coalescing."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Generic, TypeVar

_logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True, slots=True)
class _Entry(Generic[V]):
    value: V
    stored_at: float


class TtlCache(Generic[K, V]):
    """Key/value cache whose entries expire after ``ttl`` seconds.

    ``ttl`` of ``0`` keeps entries for the lifetime of the cache.  Concurrent
    misses for the same key share one loader call; a failed load is never
    stored, so the next caller retries.
    """

    def __init__(self, ttl: float = 0.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl < 0:
            raise ValueError("ttl must be >= 0")
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[K, _Entry[V]] = {}
        self._inflight: dict[K, asyncio.Future[V]] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def _expired(self, entry: _Entry[V], now: float) -> bool:
        if self._ttl <= 0:
            return False
        return (now - entry.stored_at) > self._ttl

    def get(self, key: K) -> V | None:
        """Return the cached value or ``None`` when missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry, self._clock()):
            self._entries.pop(key, None)
            return None
        return entry.value

    def put(self, key: K, value: V) -> None:
        self._entries[key] = _Entry(value=value, stored_at=self._clock())

    def invalidate(self, key: K | None = None) -> None:
        """Drop one key, or everything when *key* is ``None``."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_load(
        self,
        key: K,
        loader: Callable[[], Awaitable[V]],
        *,
        store: Callable[[V], bool] | None = None,
    ) -> V:
        """Return a cached value or run *loader* once for all concurrent callers.

        Parameters
        ----------
        key
            Cache key.
        loader
            Zero-argument coroutine factory producing the value.
        store
            Optional predicate; the loaded value is cached only when it
            returns ``True``.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            _logger.debug("Joining in-flight load key=%s", key)
            return await asyncio.shield(pending)

        future: asyncio.Future[V] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await loader()
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
                # Retrieve so an unjoined failure does not log "never retrieved".
                future.exception()
            raise
        else:
            if store is None or store(value):
                self.put(key, value)
            if not future.done():
                future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)
