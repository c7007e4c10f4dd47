"""Application lifecycle hooks for startup and shutdown."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from trafficlens.config.settings import Settings, get_settings
from trafficlens.services.aggregation.service import AggregationService
from trafficlens.services.geoip.database import GeoIPDatabaseManager
from trafficlens.services.geoip.exceptions import GeoIPConfigurationError
from trafficlens.services.geoip.resolver import LocationResolver
from trafficlens.services.ingestion import LogIngestionService
from trafficlens.services.logparser import LogParser
from trafficlens.services.pipeline import TrafficPipeline
from trafficlens.server.scheduler import create_scheduler, schedule_location_database_refresh

if TYPE_CHECKING:
    from litestar import Litestar

logger = logging.getLogger(__name__)


async def initialize_location_database(manager: GeoIPDatabaseManager) -> bool:
    """Make sure the GeoIP databases exist and open the city database.

    Missing configuration disables location lookups only; log ingestion
    keeps working and reports every location as unknown.

    Returns:
        False if the GeoIP configuration is incomplete, True otherwise.
    """
    try:
        manager.validate_config()
    except GeoIPConfigurationError as e:
        logger.error("GeoIP disabled: %s", e)
        return False

    try:
        await manager.ensure()
    except Exception as e:
        logger.exception("Failed to initialize GeoIP databases: %s", e)
        logger.error(
            "Check that the MaxMind credentials are valid, the download server "
            "is reachable and %s is writable",
            manager.settings.db_dir,
        )
        return True

    if manager.resolver.is_enabled:
        logger.info("GeoIP database initialized")
    return True


async def _start_location_database(
    manager: GeoIPDatabaseManager,
    scheduler: AsyncIOScheduler,
    settings: Settings,
) -> None:
    if await initialize_location_database(manager):
        schedule_location_database_refresh(scheduler, manager, settings)


def build_pipeline(settings: Settings) -> tuple[TrafficPipeline, LogIngestionService, GeoIPDatabaseManager]:
    """Wire the resolver, database manager, ingestion and aggregation services."""
    resolver = LocationResolver(
        locales=settings.geoip.locales,
        cache_ttl=settings.geoip.cache_ttl,
    )
    manager = GeoIPDatabaseManager(settings.geoip, resolver)
    ingestion_service = LogIngestionService(parser=LogParser(), resolver=resolver)
    aggregation_service = AggregationService(
        recent_window=timedelta(hours=settings.analytics.recent_window_hours),
        include_fallback_in_window=settings.analytics.include_fallback_timestamps_in_window,
    )
    pipeline = TrafficPipeline(
        ingestion_service=ingestion_service,
        aggregation_service=aggregation_service,
        log_paths=settings.logparser.log_paths,
    )
    return pipeline, ingestion_service, manager


async def on_startup(app: "Litestar") -> None:
    """Build the services and start the GeoIP database in the background.

    Requests are served while the databases download; until the city
    database is open every location resolves as unknown.
    """
    settings = get_settings()
    pipeline, ingestion_service, manager = build_pipeline(settings)
    logger.info("Reading log files: %s", [str(path) for path in settings.logparser.log_paths])

    scheduler: AsyncIOScheduler = create_scheduler(settings)
    scheduler.start()
    logger.info("Started APScheduler")

    # Store in app state for shutdown and API access
    app.state.pipeline = pipeline
    app.state.ingestion_service = ingestion_service
    app.state.geoip_manager = manager
    app.state.scheduler = scheduler
    app.state.geoip_init_task = asyncio.create_task(
        _start_location_database(manager, scheduler, settings),
        name="geoip-init",
    )


async def on_shutdown(app: "Litestar") -> None:
    """Gracefully stop background services and clean up resources."""
    init_task: asyncio.Task[None] | None = getattr(app.state, "geoip_init_task", None)
    if init_task and not init_task.done():
        init_task.cancel()
        try:
            await init_task
        except asyncio.CancelledError:
            pass

    # Stop scheduler
    scheduler: AsyncIOScheduler | None = getattr(app.state, "scheduler", None)
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Stopped APScheduler")

    manager: GeoIPDatabaseManager | None = getattr(app.state, "geoip_manager", None)
    if manager:
        manager.resolver.close()
        logger.info("Closed GeoIP reader")
