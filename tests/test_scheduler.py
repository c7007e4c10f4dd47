from pathlib import Path

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from trafficlens.config.settings import GeoIPSettings, get_settings
from trafficlens.server.lifecycle import initialize_location_database
from trafficlens.server.scheduler import (
    GEOIP_REFRESH_JOB_ID,
    create_scheduler,
    refresh_geoip_database_job,
    schedule_location_database_refresh,
)
from trafficlens.services.geoip.database import GeoIPDatabaseManager
from trafficlens.services.geoip.exceptions import GeoIPConfigurationError
from trafficlens.services.geoip.resolver import LocationResolver


class StubManager:
    """Records refresh calls and optionally raises."""

    def __init__(self, error: Exception | None = None, updated: list[str] | None = None) -> None:
        self.error = error
        self.updated = updated or []
        self.calls = 0

    async def refresh(self) -> list[str]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.updated


def test_schedule_weekly_refresh() -> None:
    settings = get_settings()
    scheduler = create_scheduler(settings)

    assert schedule_location_database_refresh(scheduler, StubManager(), settings) is True

    job = scheduler.get_job(GEOIP_REFRESH_JOB_ID)
    assert job is not None
    assert job.max_instances == 1
    fields = {field.name: str(field) for field in job.trigger.fields}
    assert fields["day_of_week"] == "tue"
    assert fields["hour"] == "3"
    assert fields["minute"] == "0"


def test_schedule_refresh_honours_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SCHEDULER_GEOIP_REFRESH_DAY_OF_WEEK", "sun")
    monkeypatch.setenv("SCHEDULER_GEOIP_REFRESH_HOUR", "22")
    settings = get_settings()
    scheduler = create_scheduler(settings)

    schedule_location_database_refresh(scheduler, StubManager(), settings)

    fields = {field.name: str(field) for field in scheduler.get_job(GEOIP_REFRESH_JOB_ID).trigger.fields}
    assert fields["day_of_week"] == "sun"
    assert fields["hour"] == "22"


def test_schedule_refresh_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    settings = get_settings()
    scheduler = create_scheduler(settings)

    assert isinstance(scheduler, AsyncIOScheduler)
    assert schedule_location_database_refresh(scheduler, StubManager(), settings) is False
    assert scheduler.get_jobs() == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [None, GeoIPConfigurationError("GEOIP_LICENSE_KEY"), RuntimeError("network down")],
    ids=["ok", "config", "unexpected"],
)
async def test_refresh_job_never_raises(error: Exception | None) -> None:
    manager = StubManager(error=error, updated=["GeoLite2-City"])
    await refresh_geoip_database_job(manager)
    assert manager.calls == 1


@pytest.mark.asyncio
async def test_initialize_without_config_disables_lookups(tmp_path: Path) -> None:
    resolver = LocationResolver()
    manager = GeoIPDatabaseManager(GeoIPSettings(db_dir=tmp_path / "ipdb"), resolver)

    assert await initialize_location_database(manager) is False
    assert resolver.is_enabled is False
    assert not (tmp_path / "ipdb").exists()


@pytest.mark.asyncio
async def test_initialize_survives_download_failure(tmp_path: Path) -> None:
    class UnreachableSession:
        async def __aenter__(self):
            raise OSError("network unreachable")

        async def __aexit__(self, *exc_info):
            return None

    settings = GeoIPSettings(
        account_id="123456",
        license_key="secret",
        edition_ids=["GeoLite2-City"],
        db_dir=tmp_path / "ipdb",
    )
    resolver = LocationResolver()
    manager = GeoIPDatabaseManager(settings, resolver, session_factory=UnreachableSession)

    assert await initialize_location_database(manager) is True
    assert resolver.is_enabled is False
