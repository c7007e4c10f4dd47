"""IP address to location resolution backed by a GeoIP2 city database.

The resolver owns the open database reader and the lookup cache as one
state object. Replacing the database publishes a new state (new reader,
empty cache) in a single assignment, so a lookup sees either the old pair or
the new pair. The retired reader is closed once the last lookup using it
has released it.
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from geoip2.database import Reader
from geoip2.errors import AddressNotFoundError
from IPy import IP

from trafficlens.services.logparser.constants import ALLOWED_GEOIP_LOCALES, GEOIP_LOCALES_DEFAULT
from trafficlens.services.logparser.schemas import ResolvedLocation

logger = logging.getLogger(__name__)

UNKNOWN_REGION = "Unknown region"
UNKNOWN_CITY = "Unknown city"
CACHE_TTL_SECONDS = 24 * 60 * 60


class CityReader(Protocol):
    def city(self, ip_address: str) -> Any: ...

    def close(self) -> None: ...


def create_reader(path: Path | str, locales: list[str] | None = None) -> Reader:
    """Open a GeoIP2 Reader, raising if the file is missing or unreadable."""
    if any(loc not in ALLOWED_GEOIP_LOCALES for loc in locales or []):
        logger.warning(
            "Unmatched GeoIp2 locale found. Allowed are '%s', defaulting to 'en'",
            ALLOWED_GEOIP_LOCALES,
        )
        locales = GEOIP_LOCALES_DEFAULT
    return Reader(str(path), locales=locales)


def is_valid_origin(origin: str) -> bool:
    """Return True if origin is a single IPv4 or IPv6 address."""
    if not origin or not isinstance(origin, str):  # pyright: ignore[reportUnnecessaryIsInstance]
        return False
    try:
        return IP(origin).len() == 1
    except (ValueError, TypeError):
        return False


@dataclass
class LocationCacheEntry:
    """A resolved location and the monotonic time it was resolved."""

    location: ResolvedLocation
    resolved_at: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        return (now - self.resolved_at) < ttl


@dataclass
class _ResolverState:
    reader: CityReader | None
    cache: dict[str, LocationCacheEntry] = field(default_factory=dict)
    users: int = 0
    retired: bool = False


class LocationResolver:
    """Resolves origins to region/city with a TTL cache.

    Example:
        resolver = LocationResolver(locales=["zh-CN", "en"])
        resolver.swap(create_reader("data/ipdb/GeoLite2-City.mmdb"))
        location = resolver.resolve("8.8.8.8")
    """

    def __init__(
        self,
        reader: CityReader | None = None,
        *,
        locales: list[str] | None = None,
        cache_ttl: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.locales: list[str] = locales or GEOIP_LOCALES_DEFAULT
        self.cache_ttl = cache_ttl
        self.clock = clock

        self._lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._state = _ResolverState(reader=reader)

        # Statistics
        self.cache_hits: int = 0
        self.database_queries: int = 0
        self.lookup_errors: int = 0
        self.swaps: int = 0

    @property
    def is_enabled(self) -> bool:
        """Return True if a database reader is active."""
        return self._state.reader is not None

    @property
    def cache_size(self) -> int:
        return len(self._state.cache)

    def _count(self, counter: str) -> None:
        with self._stats_lock:
            setattr(self, counter, getattr(self, counter) + 1)

    def _acquire(self) -> _ResolverState:
        with self._lock:
            state = self._state
            state.users += 1
            return state

    def _release(self, state: _ResolverState) -> None:
        with self._lock:
            state.users -= 1
            close_now = (
                state.retired
                and state.users == 0
                and state.reader is not self._state.reader
            )
        if close_now:
            self._close_reader(state.reader)

    def _close_reader(self, reader: CityReader | None) -> None:
        if reader is None:
            return
        try:
            reader.close()
        except Exception as e:
            logger.warning("Failed to close retired GeoIP reader: %s", e)

    def swap(self, reader: CityReader | None) -> None:
        """Publish a new reader together with an empty cache.

        The previous reader stays open until every lookup that started
        against it has finished. Swapping in the active reader only clears
        the cache.
        """
        new_state = _ResolverState(reader=reader)
        with self._lock:
            old_state = self._state
            if reader is old_state.reader:
                dropped = len(old_state.cache)
                old_state.cache = {}
                self.swaps += 1
                logger.info("Kept GeoIP reader, dropped %d cached locations", dropped)
                return
            self._state = new_state
            old_state.retired = True
            close_now = old_state.users == 0
            self.swaps += 1
        logger.info(
            "Swapped GeoIP reader (enabled=%s), dropped %d cached locations",
            reader is not None,
            len(old_state.cache),
        )
        if close_now:
            self._close_reader(old_state.reader)

    def close(self) -> None:
        """Retire the active reader."""
        self.swap(None)

    def clear_cache(self) -> None:
        with self._lock:
            self._state.cache = {}

    def _pick_name(self, names: Mapping[str, str] | None) -> str | None:
        if not names:
            return None
        for locale in self.locales:
            if name := names.get(locale):
                return name
        return None

    def _to_location(self, ip_data: Any) -> ResolvedLocation:
        subdivisions = getattr(ip_data, "subdivisions", None)
        subdivision = subdivisions[0] if subdivisions else None
        region = self._pick_name(getattr(subdivision, "names", None))
        city = self._pick_name(getattr(getattr(ip_data, "city", None), "names", None))
        country = self._pick_name(getattr(getattr(ip_data, "country", None), "names", None))
        location = getattr(ip_data, "location", None)
        return ResolvedLocation(
            region=region or UNKNOWN_REGION,
            city=city or UNKNOWN_CITY,
            country=country,
            latitude=getattr(location, "latitude", None),
            longitude=getattr(location, "longitude", None),
        )

    def resolve(self, origin: str) -> ResolvedLocation | None:
        """Resolve an origin address to a location.

        Returns None for malformed addresses, addresses absent from the
        database, lookup errors, or when no database is active. Successful
        lookups are cached for ``cache_ttl`` seconds.
        """
        if not is_valid_origin(origin):
            logger.debug("Invalid IP address %r, skipping location lookup", origin)
            return None

        state = self._acquire()
        try:
            now = self.clock()
            cached = state.cache.get(origin)
            if cached and cached.is_fresh(now, self.cache_ttl):
                self._count("cache_hits")
                return cached.location

            if state.reader is None:
                return None

            self._count("database_queries")
            try:
                ip_data = state.reader.city(origin)
            except AddressNotFoundError:
                logger.debug("No GeoIP data found for IP %s", origin)
                return None
            except Exception as e:
                self._count("lookup_errors")
                logger.warning("GeoIP lookup failed for %s: %s", origin, e)
                return None

            if not ip_data:
                return None

            location = self._to_location(ip_data)
            state.cache[origin] = LocationCacheEntry(location=location, resolved_at=now)
            return location
        finally:
            self._release(state)
