"""Application factory for creating Litestar app instance."""

from __future__ import annotations


from litestar import Litestar
from litestar.openapi import OpenAPIConfig
from litestar.config.compression import CompressionConfig
from litestar.config.cors import CORSConfig
from litestar.middleware.logging import LoggingMiddlewareConfig

from trafficlens.config.settings import get_settings
from trafficlens.server import plugins
from trafficlens.server.lifecycle import on_startup, on_shutdown
from trafficlens.server.routes import get_route_handlers


def create_app() -> Litestar:
    """Create and configure the Litestar application.

    This factory function loads configuration and initializes the app
    with settings for CORS, OpenAPI, compression and logging.

    Returns:
        Litestar: Configured application instance
    """
    # Load settings once at app creation
    settings = get_settings()

    # Configure OpenAPI
    openapi_config = OpenAPIConfig(
        title=settings.name,
        version=settings.version,
        description=settings.description,
        create_examples=True,
    )

    compression_config = CompressionConfig(
        backend="gzip",
        minimum_size=1000,  # Only compress responses >= 1KB
        gzip_compress_level=6,
    )

    logging_middleware_config = LoggingMiddlewareConfig()

    # Create app with configuration
    app = Litestar(
        debug=settings.debug and not settings.is_production,
        route_handlers=get_route_handlers(),
        on_startup=[on_startup],
        on_shutdown=[on_shutdown],
        logging_config=plugins.logging_config,
        openapi_config=openapi_config,
        compression_config=compression_config,
        cors_config=CORSConfig(allow_origins=["*"]),
        middleware=[logging_middleware_config.middleware],
    )

    return app
