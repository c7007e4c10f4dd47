"""Log parser module - parsing only, no I/O."""
from .logparser import LogParser, parse_log_line, parse_request, parse_timestamp, normalize_timestamp
from .schemas import ParsedLogRecord, NormalizedTimestamp, ResolvedLocation, EnrichedRecord

__all__ = [
    "LogParser",
    "parse_log_line",
    "parse_request",
    "parse_timestamp",
    "normalize_timestamp",
    "ParsedLogRecord",
    "NormalizedTimestamp",
    "ResolvedLocation",
    "EnrichedRecord",
]
