"""Shared dependency providers for API layer."""
from __future__ import annotations

from litestar import Request

from trafficlens.services.geoip.database import GeoIPDatabaseManager
from trafficlens.services.ingestion import LogIngestionService
from trafficlens.services.pipeline import TrafficPipeline


def provide_pipeline(request: Request) -> TrafficPipeline:
    """Provide the TrafficPipeline built at startup."""
    return request.app.state.pipeline


def provide_ingestion_service(request: Request) -> LogIngestionService | None:
    """Provide the LogIngestionService from app state.

    Returns None if the service is not available.
    """
    return getattr(request.app.state, "ingestion_service", None)


def provide_geoip_manager(request: Request) -> GeoIPDatabaseManager | None:
    """Provide the GeoIPDatabaseManager from app state."""
    return getattr(request.app.state, "geoip_manager", None)
