"""Configuration module for TrafficLens."""

from trafficlens.config.settings import (
    AnalyticsSettings,
    APISettings,
    GeoIPSettings,
    LogParserSettings,
    SchedulerSettings,
    Settings,
    get_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "APISettings",
    "AnalyticsSettings",
    "GeoIPSettings",
    "LogParserSettings",
    "SchedulerSettings",
]
