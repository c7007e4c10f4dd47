"""Entry points that run one ingestion pass and aggregate its records."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from trafficlens.domain.analytics.dtos import Metrics, TrafficReport

if TYPE_CHECKING:
    from trafficlens.services.aggregation.service import AggregationService
    from trafficlens.services.ingestion.service import LogIngestionService

logger = logging.getLogger(__name__)


class TrafficPipeline:
    """Ingest configured log files and reduce them to a report.

    Both methods raise NoLogDataError when the pass yields no records; any
    other exception is a processing failure.
    """

    def __init__(
        self,
        ingestion_service: "LogIngestionService",
        aggregation_service: "AggregationService",
        log_paths: Sequence[Path],
    ) -> None:
        self.ingestion_service = ingestion_service
        self.aggregation_service = aggregation_service
        self.log_paths = list(log_paths)

    async def ingest_and_aggregate_metrics(self, paths: Sequence[Path] | None = None) -> Metrics:
        records = await self.ingestion_service.ingest(self.log_paths if paths is None else paths)
        return self.aggregation_service.compute_metrics(records)

    async def ingest_and_aggregate_traffic(self, paths: Sequence[Path] | None = None) -> TrafficReport:
        records = await self.ingestion_service.ingest(self.log_paths if paths is None else paths)
        return self.aggregation_service.compute_traffic(records)
