"""Stats API endpoint for log parser and GeoIP statistics."""
from __future__ import annotations

from typing import Any

from litestar import get
from litestar.di import Provide

from trafficlens.services.geoip.database import GeoIPDatabaseManager
from trafficlens.services.ingestion import LogIngestionService
from trafficlens.api.dependencies import provide_geoip_manager as pgm
from trafficlens.api.dependencies import provide_ingestion_service as pis


@get(
    "/stats",
    dependencies={
        "ingestion_service": Provide(pis, sync_to_thread=False),
        "geoip_manager": Provide(pgm, sync_to_thread=False),
    },
)
async def stats(
    ingestion_service: LogIngestionService | None,
    geoip_manager: GeoIPDatabaseManager | None,
) -> dict[str, Any]:
    """Get log parser, resolver and database statistics.

    Returns:
        Dictionary with parsing and GeoIP statistics.
        Returns zeros if the services are not available.
    """
    result: dict[str, Any] = {
        "total_parsed_lines": 0,
        "total_skipped_lines": 0,
        "total_fallback_timestamps": 0,
        "total_processed": 0,
        "total_passes": 0,
        "geoip_enabled": False,
        "geoip_editions": {},
    }
    if ingestion_service is not None:
        result.update(
            total_parsed_lines=ingestion_service.parsed_lines,
            total_skipped_lines=ingestion_service.skipped_lines,
            total_fallback_timestamps=ingestion_service.parser.fallback_timestamps,
            total_processed=ingestion_service.total_processed,
            total_passes=ingestion_service.total_passes,
        )
    if geoip_manager is not None:
        resolver = geoip_manager.resolver
        result.update(
            geoip_enabled=resolver.is_enabled,
            geoip_editions={edition: state.value for edition, state in geoip_manager.states.items()},
            geoip_cache_size=resolver.cache_size,
            geoip_cache_hits=resolver.cache_hits,
            geoip_database_queries=resolver.database_queries,
            geoip_last_refresh=geoip_manager.last_refresh.isoformat() if geoip_manager.last_refresh else None,
        )
    return result
