from datetime import datetime, timedelta, timezone

import pytest

from trafficlens.domain.analytics.dtos import top_n
from trafficlens.services.aggregation.service import AggregationService
from trafficlens.services.geoip.resolver import UNKNOWN_CITY, UNKNOWN_REGION
from trafficlens.services.logparser.schemas import (
    EnrichedRecord,
    NormalizedTimestamp,
    ParsedLogRecord,
    ResolvedLocation,
)

NOW = datetime(2024, 1, 11, 12, 0, tzinfo=timezone.utc)
DESKTOP_UA = "Mozilla/5.0 (Windows NT)"
IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile/15E148"


def make_record(
    origin: str = "10.0.0.1",
    path: str = "/home",
    status: int = 200,
    referer: str = "-",
    user_agent: str = DESKTOP_UA,
    timestamp: datetime = NOW - timedelta(hours=1),
    fell_back: bool = False,
    location: ResolvedLocation | None = None,
) -> EnrichedRecord:
    return EnrichedRecord(
        record=ParsedLogRecord(
            origin=origin,
            timestamp=timestamp.strftime("%d/%b/%Y:%H:%M:%S %z"),
            method="GET",
            path=path,
            status=status,
            bytes=512,
            referer=referer,
            user_agent=user_agent,
        ),
        normalized_timestamp=NormalizedTimestamp(value=timestamp, fell_back=fell_back),
        location=location,
    )


@pytest.fixture
def service() -> AggregationService:
    return AggregationService(now=lambda: NOW)


@pytest.fixture
def records() -> list[EnrichedRecord]:
    shanghai = ResolvedLocation(region="Shanghai", city="Shanghai")
    shenzhen = ResolvedLocation(region="Guangdong", city="Shenzhen")
    guangzhou = ResolvedLocation(region="Guangdong", city="Guangzhou")
    return [
        make_record(location=shanghai),
        make_record(origin="1.2.3.4", referer="https://www.google.com/search?q=x", user_agent=IPHONE_UA, location=shenzhen),
        make_record(origin="1.2.3.4", path="/about", referer="https://weibo.com/u/1", location=shenzhen),
        make_record(origin="5.6.7.8", status=404, referer="https://example.org/", location=guangzhou,
                    timestamp=NOW - timedelta(days=3)),
        make_record(origin="9.9.9.9", user_agent="Googlebot/2.1", timestamp=NOW - timedelta(hours=30),
                    location=ResolvedLocation(region=UNKNOWN_REGION, city=UNKNOWN_CITY)),
        make_record(origin="8.8.8.8", path="/about", user_agent="-", location=None),
    ]


def test_compute_metrics(service: AggregationService, records: list[EnrichedRecord]) -> None:
    metrics = service.compute_metrics(records)

    assert metrics.total_visits == 6
    assert metrics.last_24_hours == 4
    assert metrics.ip_addresses == 5
    assert metrics.popular_pages == {"/home": 4, "/about": 2}
    assert metrics.status_codes == {200: 5, 404: 1}
    assert metrics.user_agents[DESKTOP_UA] == 3
    assert metrics.fallback_timestamps == 0


def test_sources_are_conserved(service: AggregationService, records: list[EnrichedRecord]) -> None:
    sources = service.count_sources(records)

    assert sources.direct == 3
    assert sources.search == 1
    assert sources.social == 1
    assert sources.referral == 1
    assert sources.total == len(records)
    assert sources.search_engines == {"google": 1, "bing": 0, "baidu": 0, "sogou": 0, "so": 0}
    assert sum(sources.search_engines.values()) == sources.search


def test_devices_are_conserved(service: AggregationService, records: list[EnrichedRecord]) -> None:
    devices = service.count_devices(records)

    assert devices.desktop == 3
    assert devices.mobile == 1
    assert devices.bot == 1
    assert devices.other == 1
    assert devices.total == len(records)


def test_empty_user_agent_is_other(service: AggregationService) -> None:
    devices = service.count_devices([make_record(user_agent="-")])
    assert devices.other == 1
    assert devices.total == 1


def test_hourly_buckets(service: AggregationService) -> None:
    utc_plus_8 = timezone(timedelta(hours=8))
    records = [
        make_record(timestamp=datetime(2024, 1, 10, 10, 59, 59, tzinfo=timezone.utc)),
        make_record(timestamp=datetime(2024, 1, 10, 10, 0, 0, tzinfo=timezone.utc)),
        # 18:30 at +08:00 is 10:30 UTC
        make_record(timestamp=datetime(2024, 1, 10, 18, 30, 0, tzinfo=utc_plus_8)),
        make_record(timestamp=datetime(2024, 1, 9, 23, 15, 0, tzinfo=timezone.utc)),
    ]

    hourly = service.count_hourly(reversed(records))

    assert [(bucket.hour, bucket.count) for bucket in hourly] == [
        ("2024-01-09 23:00", 1),
        ("2024-01-10 10:00", 3),
    ]
    assert sum(bucket.count for bucket in hourly) == len(records)


def test_geo_distribution_orders_and_excludes(service: AggregationService, records: list[EnrichedRecord]) -> None:
    distribution = service.geo_distribution(records)

    assert [(region.name, region.count) for region in distribution.provinces] == [
        ("Guangdong", 3),
        ("Shanghai", 1),
    ]
    guangdong = distribution.provinces[0]
    assert [(city.name, city.count) for city in guangdong.cities] == [("Shenzhen", 2), ("Guangzhou", 1)]
    for region in distribution.provinces:
        assert region.count == sum(city.count for city in region.cities)


def test_geo_distribution_keeps_unknown_city(service: AggregationService) -> None:
    records = [make_record(location=ResolvedLocation(region="Zhejiang", city=UNKNOWN_CITY))]
    distribution = service.geo_distribution(records)
    assert distribution.provinces[0].name == "Zhejiang"
    assert distribution.provinces[0].cities[0].name == UNKNOWN_CITY


def test_geo_distribution_ties_keep_first_seen_order(service: AggregationService) -> None:
    records = [
        make_record(location=ResolvedLocation(region="Beijing", city="Beijing")),
        make_record(location=ResolvedLocation(region="Tianjin", city="Tianjin")),
    ]
    names = [region.name for region in service.geo_distribution(records).provinces]
    assert names == ["Beijing", "Tianjin"]


def test_recent_window_boundary(service: AggregationService) -> None:
    records = [
        make_record(timestamp=NOW - timedelta(hours=24)),
        make_record(timestamp=NOW - timedelta(hours=24, seconds=1)),
    ]
    assert service.count_recent(records) == 1


def test_fallback_timestamps_are_counted_but_not_recent(service: AggregationService) -> None:
    records = [
        make_record(timestamp=NOW, fell_back=True),
        make_record(timestamp=NOW - timedelta(hours=2)),
    ]
    metrics = service.compute_metrics(records)

    assert metrics.total_visits == 2
    assert metrics.last_24_hours == 1
    assert metrics.fallback_timestamps == 1
    assert sum(bucket.count for bucket in service.count_hourly(records)) == 2


def test_fallback_timestamps_can_count_as_recent() -> None:
    service = AggregationService(include_fallback_in_window=True, now=lambda: NOW)
    records = [make_record(timestamp=NOW, fell_back=True)]
    assert service.count_recent(records) == 1


def test_compute_traffic(service: AggregationService, records: list[EnrichedRecord]) -> None:
    report = service.compute_traffic(records)

    assert sum(bucket.count for bucket in report.hourly) == len(records)
    assert report.sources.total == len(records)
    assert report.devices.total == len(records)
    assert [region.name for region in report.geo_distribution.provinces] == ["Guangdong", "Shanghai"]


def test_aggregation_ignores_record_order(service: AggregationService, records: list[EnrichedRecord]) -> None:
    forward = service.compute_metrics(records)
    backward = service.compute_metrics(list(reversed(records)))

    assert forward.total_visits == backward.total_visits
    assert forward.last_24_hours == backward.last_24_hours
    assert forward.popular_pages == backward.popular_pages
    assert forward.status_codes == backward.status_codes
    assert forward.sources == backward.sources
    assert forward.devices == backward.devices


def test_top_n_breaks_ties_by_first_seen() -> None:
    counts = {"/b": 2, "/a": 2, "/c": 5, "/d": 1}
    assert top_n(counts, 3) == [("/c", 5), ("/b", 2), ("/a", 2)]


def test_metrics_top_helpers(service: AggregationService, records: list[EnrichedRecord]) -> None:
    metrics = service.compute_metrics(records)
    assert metrics.top_pages(1) == [("/home", 4)]
    assert metrics.top_status_codes(2) == [(200, 5), (404, 1)]
