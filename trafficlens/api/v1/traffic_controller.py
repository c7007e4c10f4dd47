"""Traffic metrics API endpoints."""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from litestar import Controller, get
from litestar.di import Provide
from litestar.exceptions import InternalServerException, NotFoundException
from litestar.params import Parameter

from trafficlens.config.settings import get_settings
from trafficlens.domain.analytics.dtos import Metrics, TopEntries, TrafficReport
from trafficlens.services.ingestion import NoLogDataError
from trafficlens.services.pipeline import TrafficPipeline

from trafficlens.api.dependencies import provide_pipeline

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _run_pass(compute: Callable[[], Awaitable[T]]) -> T:
    """Run one ingestion pass, mapping failures to 404 or 500."""
    try:
        return await compute()
    except NoLogDataError as e:
        logger.warning("%s", e)
        raise NotFoundException(detail="No log data found") from e
    except Exception as e:
        logger.exception("Failed to process log data: %s", e)
        raise InternalServerException(detail="Failed to process log data") from e


class TrafficController(Controller):
    """Traffic endpoints

    Every request re-reads the configured log files.
    """
    path = "/api"
    tags = ["Traffic"]

    dependencies = {
        "pipeline": Provide(provide_pipeline, sync_to_thread=False),
    }

    @get("/metrics", description="Summary metrics for the configured access logs.")
    async def get_metrics(self, pipeline: TrafficPipeline) -> Metrics:
        """Volume, popular pages, status codes, user agents, sources, devices and regions."""
        return await _run_pass(pipeline.ingest_and_aggregate_metrics)

    @get("/traffic", description="Hourly traffic with source, device and region breakdowns.")
    async def get_traffic(self, pipeline: TrafficPipeline) -> TrafficReport:
        return await _run_pass(pipeline.ingest_and_aggregate_traffic)

    @get("/top", description="Most frequent paths, status codes and user agents.")
    async def get_top(
        self,
        pipeline: TrafficPipeline,
        n: int | None = Parameter(default=None, ge=1, le=1000, description="Entries per list"),
    ) -> TopEntries:
        """Ties keep the order in which entries first appeared in the logs."""
        metrics = await _run_pass(pipeline.ingest_and_aggregate_metrics)
        return TopEntries.from_metrics(metrics, n or get_settings().analytics.top_n)
