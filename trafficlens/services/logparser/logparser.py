import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from urllib.parse import urlsplit

from .constants import (
    access_log_pattern,
    MONTHS,
    UNKNOWN_METHOD,
    DEFAULT_PATH,
    MISSING_FIELD,
)
from .schemas import ParsedLogRecord, NormalizedTimestamp


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_request(request: str) -> tuple[str, str]:
    """Split a request line into method and path, dropping query and fragment.

    An empty request gives ``("UNKNOWN", "/")``.
    """
    parts = request.split(" ")
    method = parts[0] or UNKNOWN_METHOD
    target = parts[1] if len(parts) > 1 else ""
    if not target:
        return method, DEFAULT_PATH
    if target.startswith("/"):
        # Origin-form: "//admin" is a path here, not a network location
        path = target.split("?", 1)[0].split("#", 1)[0]
    else:
        try:
            path = urlsplit(target).path
        except ValueError:
            return method, DEFAULT_PATH
    return method, path or DEFAULT_PATH


def _to_int(value: str | None) -> int:
    try:
        return int(value) if value else 0
    except ValueError:
        return 0


@lru_cache(maxsize=4096)
def parse_log_line(line: str) -> ParsedLogRecord | None:
    """Parse one combined-format access log line.

    Returns None when the line lacks the origin, bracketed timestamp, quoted
    request, status or byte count. Referer and user agent default to ``-``
    when the quoted tail is missing.
    """
    matched = access_log_pattern().match(line.rstrip("\r\n"))
    if not matched:
        return None

    datadict = matched.groupdict()
    method, path = parse_request(datadict["request"])

    return ParsedLogRecord(
        origin=datadict["origin"],
        timestamp=datadict["timestamp"],
        method=method,
        path=path,
        status=_to_int(datadict["status"]),
        bytes=_to_int(datadict["bytes"]),
        referer=datadict.get("referer") or MISSING_FIELD,
        user_agent=datadict.get("user_agent") or MISSING_FIELD,
    )


def _parse_offset(value: str) -> timezone:
    value = value.replace(":", "")
    if len(value) != 5 or value[0] not in "+-" or not value[1:].isdigit():
        raise ValueError(f"Invalid timezone offset: {value!r}")
    sign = -1 if value[0] == "-" else 1
    delta = timedelta(hours=int(value[1:3]), minutes=int(value[3:5]))
    return timezone(sign * delta)


def parse_timestamp(raw: str) -> datetime:
    """Parse ``DD/Mon/YYYY:HH:MM:SS +ZZZZ`` into an aware datetime.

    Raises ValueError for any missing token, non-numeric field or unknown
    month abbreviation.
    """
    if not raw or not isinstance(raw, str):
        raise ValueError("Empty timestamp")

    parts = raw.split(" ")
    if len(parts) != 2:
        raise ValueError(f"Invalid timestamp parts: {raw!r}")
    date_part, offset = parts

    date_tokens = date_part.split("/")
    if len(date_tokens) != 3:
        raise ValueError(f"Invalid date parts: {raw!r}")
    day, month_name, year_time = date_tokens

    year, *time_tokens = year_time.split(":")
    if len(time_tokens) != 3:
        raise ValueError(f"Invalid time parts: {raw!r}")

    month = MONTHS.get(month_name)
    if month is None:
        raise ValueError(f"Invalid month: {month_name!r}")

    numeric = [day, year, *time_tokens]
    if not all(token.isdigit() for token in numeric):
        raise ValueError(f"Non-numeric date or time field: {raw!r}")

    hour, minute, second = (int(token) for token in time_tokens)
    return datetime(
        int(year), month, int(day), hour, minute, second, tzinfo=_parse_offset(offset)
    )


def normalize_timestamp(
    raw: str, now: Callable[[], datetime] = _utcnow
) -> NormalizedTimestamp:
    """Normalize a vendor timestamp, falling back to the current time.

    The fallback is tagged so aggregation can tell it apart from a real
    timestamp.
    """
    try:
        return NormalizedTimestamp(value=parse_timestamp(raw))
    except ValueError as e:
        logger.debug("Timestamp parsing failed for %r: %s", raw, e)
        return NormalizedTimestamp(value=now(), fell_back=True)


class LogParser:
    """Parses access log lines and keeps per-process counters.

    Wraps the pure ``parse_log_line`` / ``normalize_timestamp`` functions so
    the ingestion service can report how many lines were parsed, skipped or
    had their timestamp replaced.
    """

    def __init__(self, now: Callable[[], datetime] = _utcnow) -> None:
        self.now = now
        self._stats_lock = threading.Lock()

        # Statistics
        self.parsed_lines: int = 0
        self.skipped_lines: int = 0
        self.fallback_timestamps: int = 0

    def parsed_lines_count(self) -> int:
        """Return the number of parsed lines."""
        return self.parsed_lines

    def skipped_lines_count(self) -> int:
        """Return the number of skipped lines."""
        return self.skipped_lines

    def _count(self, counter: str) -> None:
        # Files are enriched on worker threads sharing one parser
        with self._stats_lock:
            setattr(self, counter, getattr(self, counter) + 1)

    def parse(self, line: str) -> ParsedLogRecord | None:
        """Parse a line, logging and counting lines that do not match."""
        record = parse_log_line(line)
        if record is None:
            logger.warning("Skipping unparseable log line: '%s'", line.strip())
            self._count("skipped_lines")
            return None
        self._count("parsed_lines")
        return record

    def normalize(self, raw: str) -> NormalizedTimestamp:
        normalized = normalize_timestamp(raw, now=self.now)
        if normalized.fell_back:
            self._count("fallback_timestamps")
        return normalized
