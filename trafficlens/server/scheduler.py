"""APScheduler configuration and scheduled job definitions.

This module configures the AsyncIOScheduler from APScheduler 3.x and defines
the weekly GeoIP database refresh.
"""

from __future__ import annotations

import logging
from datetime import timezone
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from trafficlens.services.geoip.exceptions import GeoIPConfigurationError

if TYPE_CHECKING:
    from trafficlens.config.settings import Settings
    from trafficlens.services.geoip.database import GeoIPDatabaseManager

logger = logging.getLogger(__name__)

GEOIP_REFRESH_JOB_ID = "geoip-refresh"


async def refresh_geoip_database_job(manager: "GeoIPDatabaseManager") -> None:
    """Download newer GeoIP editions and publish them to the resolver.

    Errors are logged and the current database stays active; the next
    scheduled run tries again.

    Args:
        manager: Database manager shared with the running app.
    """
    try:
        updated = await manager.refresh()
    except GeoIPConfigurationError as e:
        logger.error("Skipping GeoIP refresh: %s", e)
        return
    except Exception as e:
        logger.exception("GeoIP database refresh failed: %s", e)
        return

    logger.info("Completed GeoIP refresh job, updated editions: %s", updated or "none")


def create_scheduler(settings: "Settings") -> AsyncIOScheduler:
    """Create the APScheduler instance.

    Args:
        settings: Application settings for job configuration.

    Returns:
        AsyncIOScheduler (not yet started).
    """
    scheduler = AsyncIOScheduler(timezone=timezone.utc)
    if not settings.scheduler.enabled:
        logger.info("Scheduler disabled via settings")
    return scheduler


def schedule_location_database_refresh(
    scheduler: AsyncIOScheduler,
    manager: "GeoIPDatabaseManager",
    settings: "Settings",
) -> bool:
    """Register the weekly GeoIP refresh job.

    Returns:
        True if the job was added, False if the scheduler is disabled.
    """
    if not settings.scheduler.enabled:
        return False

    scheduler.add_job(
        refresh_geoip_database_job,
        CronTrigger(
            day_of_week=settings.scheduler.geoip_refresh_day_of_week,
            hour=settings.scheduler.geoip_refresh_hour,
            minute=settings.scheduler.geoip_refresh_minute,
            timezone=timezone.utc,
        ),
        id=GEOIP_REFRESH_JOB_ID,
        name="Refresh GeoIP databases",
        args=[manager],
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        "Scheduled GeoIP refresh every %s at %02d:%02d UTC",
        settings.scheduler.geoip_refresh_day_of_week,
        settings.scheduler.geoip_refresh_hour,
        settings.scheduler.geoip_refresh_minute,
    )
    return True
