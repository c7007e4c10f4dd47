import os
from pathlib import Path

import pytest

TESTS_DIR = Path(__file__).parent


@pytest.fixture(scope="session", autouse=True)
def baseline_settings_env():
    """Provide baseline env vars so tests are not affected by local .env.

    Pydantic-settings precedence: init args > env vars > .env > defaults.
    Setting these ensures stable defaults regardless of any .env present.
    """
    os.environ.update({
        # App
        "APP_NAME": "TrafficLens API",
        "APP_VERSION": "0.1.0",
        "APP_DEBUG": "false",
        "APP_ENVIRONMENT": "development",
        # API
        "API_HOST": "0.0.0.0",
        "API_PORT": "3000",
        "API_WORKERS": "1",
        "API_RELOAD": "false",
        "API_LOG_LEVEL": "info",
        # Scheduler
        "SCHEDULER_ENABLED": "true",
    })
    for name in ("GEOIP_ACCOUNT_ID", "GEOIP_LICENSE_KEY", "GEOIP_EDITION_IDS", "LOGPARSER_LOG_PATHS"):
        os.environ.pop(name, None)


@pytest.fixture(autouse=True)
def refresh_settings_cache():
    """Clear settings cache so env changes take effect per test.

    Ensures tests using monkeypatch.setenv() get a fresh Settings instance.
    """
    from trafficlens.config.settings import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def valid_log_lines() -> list[str]:
    """Load the contents of the valid access log file."""
    with open(TESTS_DIR / "valid_access_log.txt", "r", encoding="utf-8") as f:
        return f.read().splitlines()


@pytest.fixture
def invalid_log_lines() -> list[str]:
    """Load the contents of the invalid log file."""
    with open(TESTS_DIR / "invalid_logs.txt", "r", encoding="utf-8") as f:
        return f.read().splitlines()


class FakeNames:
    """Stub for a GeoIP2 record carrying a names map."""

    def __init__(self, **names: str) -> None:
        self.names = {key.replace("_", "-"): value for key, value in names.items()}


class FakeLocation:
    latitude = 31.2222
    longitude = 121.4581


class FakeCity:
    """Stub for geoip2.models.City."""

    def __init__(self, region: dict[str, str] | None, city: dict[str, str] | None) -> None:
        self.country = FakeNames(en="China", zh_CN="中国")
        self.subdivisions = [FakeNames(**region)] if region is not None else []
        self.city = FakeNames(**city) if city is not None else FakeNames()
        self.location = FakeLocation()


class FakeReader:
    """Stub for geoip2.database.Reader counting city() calls."""

    def __init__(self, data: dict[str, FakeCity] | None = None, error: Exception | None = None) -> None:
        self.data = data or {}
        self.error = error
        self.queries: list[str] = []
        self.closed = False

    def city(self, ip_address: str) -> FakeCity:
        from geoip2.errors import AddressNotFoundError

        self.queries.append(ip_address)
        if self.closed:
            raise ValueError("Attempt to read from a closed MaxMind DB.")
        if self.error is not None:
            raise self.error
        if ip_address not in self.data:
            raise AddressNotFoundError(f"The address {ip_address} is not in the database.")
        return self.data[ip_address]

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def shanghai() -> FakeCity:
    return FakeCity(region={"en": "Shanghai", "zh_CN": "上海"}, city={"en": "Shanghai", "zh_CN": "上海"})


@pytest.fixture
def fake_reader(shanghai: FakeCity) -> FakeReader:
    return FakeReader({
        "1.2.3.4": shanghai,
        "5.6.7.8": FakeCity(region={"en": "Guangdong"}, city={"en": "Shenzhen"}),
        "9.9.9.9": FakeCity(region=None, city=None),
    })
