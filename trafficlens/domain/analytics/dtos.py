"""DTOs for analytics data transfer."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field


def top_n(counts: dict, n: int) -> list[tuple]:
    """Return the n largest entries; ties keep first-seen order."""
    return Counter(counts).most_common(n)


@dataclass
class SourceBreakdown:
    """Request counts per traffic source, with search split by engine."""

    direct: int = 0
    search: int = 0
    referral: int = 0
    social: int = 0
    search_engines: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.direct + self.search + self.referral + self.social


@dataclass
class DeviceBreakdown:
    """Request counts per device class."""

    desktop: int = 0
    mobile: int = 0
    tablet: int = 0
    bot: int = 0
    other: int = 0

    @property
    def total(self) -> int:
        return self.desktop + self.mobile + self.tablet + self.bot + self.other


@dataclass
class CityCount:
    name: str
    count: int


@dataclass
class RegionCount:
    """Requests from one region, broken down by city (largest first)."""

    name: str
    count: int
    cities: list[CityCount] = field(default_factory=list)


@dataclass
class GeoDistribution:
    """Regions ordered by request count, largest first."""

    provinces: list[RegionCount] = field(default_factory=list)


@dataclass
class HourlyBucket:
    """Requests in one clock hour (UTC), keyed ``YYYY-MM-DD HH:00``."""

    hour: str
    count: int


@dataclass
class Metrics:
    """Summary metrics for the configured access logs.

    The frequency maps keep first-seen order, so ``top_n`` breaks ties the
    same way on every request.
    """

    total_visits: int
    last_24_hours: int
    popular_pages: dict[str, int]
    status_codes: dict[int, int]
    user_agents: dict[str, int]
    ip_addresses: int
    geo_distribution: GeoDistribution
    sources: SourceBreakdown
    devices: DeviceBreakdown
    fallback_timestamps: int = 0

    def top_pages(self, n: int) -> list[tuple[str, int]]:
        return top_n(self.popular_pages, n)

    def top_status_codes(self, n: int) -> list[tuple[int, int]]:
        return top_n(self.status_codes, n)

    def top_user_agents(self, n: int) -> list[tuple[str, int]]:
        return top_n(self.user_agents, n)


@dataclass
class TrafficReport:
    """Traffic over time with source, device and geographic breakdowns."""

    hourly: list[HourlyBucket]
    sources: SourceBreakdown
    devices: DeviceBreakdown
    geo_distribution: GeoDistribution


@dataclass
class TopEntries:
    """The most frequent paths, status codes and user agents."""

    pages: list[tuple[str, int]]
    status_codes: list[tuple[int, int]]
    user_agents: list[tuple[str, int]]

    @classmethod
    def from_metrics(cls, metrics: Metrics, n: int) -> "TopEntries":
        return cls(
            pages=metrics.top_pages(n),
            status_codes=metrics.top_status_codes(n),
            user_agents=metrics.top_user_agents(n),
        )
