"""Global plugin instances and configurations.

This module provides the logging configuration shared by the app and
the background jobs.
"""
from __future__ import annotations

from litestar.logging import LoggingConfig

from trafficlens.config.settings import get_settings

settings = get_settings()

# Logging configuration
logging_config = LoggingConfig(
    root={"level": settings.api.log_level, "handlers": ["queue_listener"]},
    formatters={
        "standard": {"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"}
    },
    log_exceptions="always",
)
