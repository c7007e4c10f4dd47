"""Errors raised by the GeoIP subsystem."""


class GeoIPError(Exception):
    """Base class for GeoIP errors."""


class GeoIPConfigurationError(GeoIPError):
    """Account id, license key or edition ids are missing."""


class GeoIPDownloadError(GeoIPError):
    """A database edition could not be downloaded or installed."""
