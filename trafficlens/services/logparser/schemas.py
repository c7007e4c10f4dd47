"""Schemas for parsed log data - pure data, no I/O."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class ParsedLogRecord:
    """One access log line split into its fields."""

    origin: str
    timestamp: str
    method: str
    path: str
    status: int
    bytes: int
    referer: str
    user_agent: str


@dataclass(frozen=True)
class NormalizedTimestamp:
    """Result of normalizing a vendor timestamp.

    ``fell_back`` is True when the raw value could not be parsed and
    ``value`` is the wall-clock time at normalization instead.
    """

    value: datetime
    fell_back: bool = False

    def isoformat(self) -> str:
        return self.value.isoformat()


@dataclass(frozen=True)
class ResolvedLocation:
    """Geographic origin of an IP address."""

    region: str
    city: str
    country: str | None = None
    latitude: float | None = None
    longitude: float | None = None


@dataclass(frozen=True)
class EnrichedRecord:
    """A parsed log line with its normalized time and resolved location."""

    record: ParsedLogRecord
    normalized_timestamp: NormalizedTimestamp
    location: ResolvedLocation | None

    @property
    def origin(self) -> str:
        return self.record.origin

    @property
    def path(self) -> str:
        return self.record.path

    @property
    def status(self) -> int:
        return self.record.status

    @property
    def referer(self) -> str:
        return self.record.referer

    @property
    def user_agent(self) -> str:
        return self.record.user_agent

    @property
    def timestamp(self) -> datetime:
        return self.normalized_timestamp.value
