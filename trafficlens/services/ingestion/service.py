"""Log ingestion service - reads access logs and enriches every line.

This service orchestrates:
- Reading the configured log files (missing files are skipped)
- Parsing and timestamp normalization via LogParser
- Location lookups via the shared LocationResolver

Files are read and enriched concurrently; the pass returns only after every
file has been processed.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles
import aiofiles.os

from trafficlens.services.logparser.logparser import LogParser
from trafficlens.services.logparser.schemas import EnrichedRecord

if TYPE_CHECKING:
    from trafficlens.services.geoip.resolver import LocationResolver


logger = logging.getLogger(__name__)


class NoLogDataError(Exception):
    """An ingestion pass produced no records."""


class LogIngestionService:
    """Reads access log files and turns each line into an EnrichedRecord.

    Example:
        service = LogIngestionService(parser=LogParser(), resolver=resolver)
        records = await service.ingest([Path("/var/log/nginx/access.log")])
    """

    def __init__(
        self,
        parser: LogParser,
        resolver: "LocationResolver",
    ) -> None:
        """Initialize the log ingestion service.

        Args:
            parser: LogParser instance for parsing log lines.
            resolver: Shared resolver for IP address locations.
        """
        self.parser: LogParser = parser
        self.resolver: LocationResolver = resolver

        # Statistics
        self.total_passes: int = 0
        self.total_processed: int = 0
        self.missing_files: int = 0

    async def read_lines(self, path: Path) -> list[str]:
        """Read a log file into non-empty lines; a missing file gives no lines."""
        if not await aiofiles.os.path.exists(path):
            logger.warning("Log file does not exist: %s", path)
            self.missing_files += 1
            return []
        try:
            async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as f:
                content = await f.read()
        except OSError as e:
            logger.error("Failed to read log file %s: %s", path, e)
            return []
        return [line for line in content.split("\n") if line.strip()]

    def enrich_line(self, line: str) -> EnrichedRecord | None:
        """Parse, normalize and resolve a single line."""
        record = self.parser.parse(line)
        if record is None:
            return None
        return EnrichedRecord(
            record=record,
            normalized_timestamp=self.parser.normalize(record.timestamp),
            location=self.resolver.resolve(record.origin),
        )

    def enrich_lines(self, lines: Sequence[str]) -> list[EnrichedRecord]:
        records = []
        for line in lines:
            if enriched := self.enrich_line(line):
                records.append(enriched)
        return records

    async def _ingest_file(self, path: Path) -> list[EnrichedRecord]:
        lines = await self.read_lines(path)
        if not lines:
            return []
        # Lookups are blocking mmap reads, keep them off the event loop.
        records = await asyncio.to_thread(self.enrich_lines, lines)
        logger.debug("Parsed %d of %d lines from %s", len(records), len(lines), path)
        return records

    async def ingest(self, paths: Sequence[Path | str]) -> list[EnrichedRecord]:
        """Read and enrich every line of every file.

        Raises:
            NoLogDataError: No file existed or no line could be parsed.
        """
        per_file = await asyncio.gather(*(self._ingest_file(Path(path)) for path in paths))
        records = [record for file_records in per_file for record in file_records]

        self.total_passes += 1
        self.total_processed += len(records)
        if not records:
            raise NoLogDataError(f"No log data found in {len(paths)} configured file(s)")
        return records

    # Statistics properties for API endpoints
    @property
    def parsed_lines(self) -> int:
        """Return the number of parsed lines from the parser."""
        return self.parser.parsed_lines

    @property
    def skipped_lines(self) -> int:
        """Return the number of skipped lines from the parser."""
        return self.parser.skipped_lines
