"""GeoIP lookups and database lifecycle."""
from .database import EditionState, GeoIPDatabaseManager
from .exceptions import GeoIPConfigurationError, GeoIPDownloadError, GeoIPError
from .resolver import (
    LocationResolver,
    LocationCacheEntry,
    create_reader,
    is_valid_origin,
    UNKNOWN_CITY,
    UNKNOWN_REGION,
)

__all__ = [
    "EditionState",
    "GeoIPDatabaseManager",
    "GeoIPConfigurationError",
    "GeoIPDownloadError",
    "GeoIPError",
    "LocationResolver",
    "LocationCacheEntry",
    "create_reader",
    "is_valid_origin",
    "UNKNOWN_CITY",
    "UNKNOWN_REGION",
]
