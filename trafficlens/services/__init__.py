"""Services layer - parsing, enrichment and aggregation."""
from .logparser import LogParser
from .ingestion import LogIngestionService, NoLogDataError

__all__ = ["LogParser", "LogIngestionService", "NoLogDataError"]
