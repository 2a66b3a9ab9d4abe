"""Time-bounded cache in front of the upstream geocoder."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Sequence
from typing import Protocol

from pylivetrack._cache import TtlCache
from pylivetrack._constants import DEFAULT_GEOCODE_CACHE_TTL_SECONDS
from pylivetrack.exceptions import GeocodingError, TrackingError
from pylivetrack.models import GeocodeCacheEntry, GeocodeResult

_logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


class Geocoder(Protocol):
    async def geocode(self, query: str) -> Sequence[GeocodeResult]:
        ...


def normalize_query(address: str) -> str:
    """Case- and whitespace-insensitive cache key for *address*."""
    return _WHITESPACE.sub(" ", address).strip().lower()


def _has_results(entry: GeocodeCacheEntry) -> bool:
    return bool(entry.results)


class GeocodeCache:
    """Cache geocoding results per normalised query.

    Hits within ``ttl`` return the stored results without calling the
    upstream geocoder.  Expired entries are refreshed and replaced.  Empty
    result lists are returned but not stored, so a later lookup asks again.
    Concurrent misses for the same query share one upstream call.

    Parameters
    ----------
    geocoder : Geocoder
        Upstream geocoder.
    ttl : float
        Entry lifetime in seconds; ``0`` never expires.
    clock : callable
        Wall-clock seconds, injectable for tests.
    """

    def __init__(
        self,
        geocoder: Geocoder,
        *,
        ttl: float = DEFAULT_GEOCODE_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl < 0:
            raise ValueError("ttl must be >= 0")
        self._geocoder = geocoder
        self._ttl = ttl
        self._clock = clock
        # Expiry is judged per entry, so the backing cache keeps everything.
        self._entries: TtlCache[str, GeocodeCacheEntry] = TtlCache()

    def entry(self, address: str) -> GeocodeCacheEntry | None:
        """Return the live cache entry for *address*, if any."""
        key = normalize_query(address)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            _logger.debug("Geocode cache entry expired key=%r", key)
            self._entries.invalidate(key)
            return None
        return entry

    async def lookup(self, address: str) -> tuple[GeocodeResult, ...]:
        """Return all candidates for *address*, best first.

        Raises
        ------
        GeocodingError
            When the upstream geocoder fails.  Nothing is cached.
        """
        key = normalize_query(address)
        if not key:
            raise GeocodingError("Cannot geocode an empty address")

        entry = self.entry(address)
        if entry is not None:
            return entry.results

        async def _load() -> GeocodeCacheEntry:
            results = await self._fetch(address)
            if not results:
                _logger.debug("Geocoder returned no results for %r; not caching", address)
            return GeocodeCacheEntry(query_key=key, results=results, created_at=self._clock(), ttl=self._ttl)

        entry = await self._entries.get_or_load(key, _load, store=_has_results)
        return entry.results

    async def _fetch(self, address: str) -> tuple[GeocodeResult, ...]:
        _logger.debug("Geocode cache miss %r", address)
        try:
            results = await self._geocoder.geocode(address.strip())
        except GeocodingError:
            raise
        except TrackingError as exc:
            raise GeocodingError(f"Geocoding failed for {address!r}: {exc}") from exc
        return tuple(sorted(results, key=lambda result: result.confidence, reverse=True))

    async def resolve(self, address: str) -> GeocodeResult:
        """Return the highest-confidence candidate for *address*."""
        results = await self.lookup(address)
        if not results:
            raise GeocodingError(f"No geocoding results for {address!r}")
        return results[0]

    def invalidate(self, address: str | None = None) -> None:
        self._entries.invalidate(normalize_query(address) if address is not None else None)

    def __len__(self) -> int:
        return len(self._entries)
