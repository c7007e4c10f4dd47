"""Aggregation service for computing traffic analytics from enriched records.

This service handles:
- Volume counts (total and recent window)
- Frequency maps for paths, status codes and user agents
- Traffic source and device classification
- Hourly buckets and the region/city distribution

Every method is a pure reduction over the records it is given.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timedelta, timezone

from trafficlens.domain.analytics.dtos import (
    CityCount,
    DeviceBreakdown,
    GeoDistribution,
    HourlyBucket,
    Metrics,
    RegionCount,
    SourceBreakdown,
    TrafficReport,
)
from trafficlens.services.aggregation.classification import (
    SEARCH_ENGINES,
    TrafficSource,
    classify_device,
    classify_source,
    search_engine,
)
from trafficlens.services.geoip.resolver import UNKNOWN_REGION
from trafficlens.services.logparser.schemas import EnrichedRecord

logger = logging.getLogger(__name__)

HOUR_FORMAT = "%Y-%m-%d %H:00"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _floor_to_hour(dt: datetime) -> datetime:
    """Truncate datetime to the start of its hour in UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)


class AggregationService:
    """Reduces enriched records into Metrics and TrafficReport objects.

    Example:
        service = AggregationService(recent_window=timedelta(hours=24))
        metrics = service.compute_metrics(records)
        report = service.compute_traffic(records)
    """

    def __init__(
        self,
        *,
        recent_window: timedelta = timedelta(hours=24),
        include_fallback_in_window: bool = False,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the aggregation service.

        Args:
            recent_window: Width of the recent-traffic window.
            include_fallback_in_window: Count records whose timestamp fell
                back to "now" in the recent window.
            now: Clock used as the end of the recent window.
        """
        self.recent_window = recent_window
        self.include_fallback_in_window = include_fallback_in_window
        self.now = now

    def count_recent(self, records: Iterable[EnrichedRecord], now: datetime | None = None) -> int:
        """Count records no older than the recent window."""
        now = now or self.now()
        count = 0
        for record in records:
            if record.normalized_timestamp.fell_back and not self.include_fallback_in_window:
                continue
            if now - record.timestamp <= self.recent_window:
                count += 1
        return count

    @staticmethod
    def count_sources(records: Iterable[EnrichedRecord]) -> SourceBreakdown:
        sources = SourceBreakdown(search_engines={engine: 0 for engine, _ in SEARCH_ENGINES})
        for record in records:
            source = classify_source(record.referer)
            if source == TrafficSource.DIRECT:
                sources.direct += 1
            elif source == TrafficSource.SEARCH:
                sources.search += 1
                if engine := search_engine(record.referer):
                    sources.search_engines[engine] += 1
            elif source == TrafficSource.SOCIAL:
                sources.social += 1
            else:
                sources.referral += 1
        return sources

    @staticmethod
    def count_devices(records: Iterable[EnrichedRecord]) -> DeviceBreakdown:
        devices = DeviceBreakdown()
        for record in records:
            device = classify_device(record.user_agent)
            setattr(devices, device, getattr(devices, device) + 1)
        return devices

    @staticmethod
    def count_hourly(records: Iterable[EnrichedRecord]) -> list[HourlyBucket]:
        """Count records per UTC hour, only for hours with records, oldest first."""
        buckets: dict[datetime, int] = {}
        for record in records:
            hour = _floor_to_hour(record.timestamp)
            buckets[hour] = buckets.get(hour, 0) + 1
        return [
            HourlyBucket(hour=hour.strftime(HOUR_FORMAT), count=count)
            for hour, count in sorted(buckets.items())
        ]

    @staticmethod
    def geo_distribution(records: Iterable[EnrichedRecord]) -> GeoDistribution:
        """Group records by region then city, largest first.

        Records without a resolved region are left out.
        """
        regions: dict[str, dict[str, int]] = {}
        for record in records:
            location = record.location
            if location is None or not location.region or location.region == UNKNOWN_REGION:
                continue
            cities = regions.setdefault(location.region, {})
            cities[location.city] = cities.get(location.city, 0) + 1

        provinces = [
            RegionCount(
                name=region,
                count=sum(cities.values()),
                cities=sorted(
                    (CityCount(name=city, count=count) for city, count in cities.items()),
                    key=lambda city: city.count,
                    reverse=True,
                ),
            )
            for region, cities in regions.items()
        ]
        provinces.sort(key=lambda province: province.count, reverse=True)
        return GeoDistribution(provinces=provinces)

    def compute_metrics(self, records: Sequence[EnrichedRecord]) -> Metrics:
        """Compute the summary metrics for one ingestion pass."""
        popular_pages: dict[str, int] = {}
        status_codes: dict[int, int] = {}
        user_agents: dict[str, int] = {}
        origins: set[str] = set()
        fallback = 0

        for record in records:
            popular_pages[record.path] = popular_pages.get(record.path, 0) + 1
            status_codes[record.status] = status_codes.get(record.status, 0) + 1
            user_agents[record.user_agent] = user_agents.get(record.user_agent, 0) + 1
            origins.add(record.origin)
            if record.normalized_timestamp.fell_back:
                fallback += 1

        if fallback:
            logger.warning(
                "%d of %d records had an unparseable timestamp", fallback, len(records)
            )

        return Metrics(
            total_visits=len(records),
            last_24_hours=self.count_recent(records),
            popular_pages=popular_pages,
            status_codes=status_codes,
            user_agents=user_agents,
            ip_addresses=len(origins),
            geo_distribution=self.geo_distribution(records),
            sources=self.count_sources(records),
            devices=self.count_devices(records),
            fallback_timestamps=fallback,
        )

    def compute_traffic(self, records: Sequence[EnrichedRecord]) -> TrafficReport:
        """Compute the traffic-over-time report for one ingestion pass."""
        return TrafficReport(
            hourly=self.count_hourly(records),
            sources=self.count_sources(records),
            devices=self.count_devices(records),
            geo_distribution=self.geo_distribution(records),
        )
