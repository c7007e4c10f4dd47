"""Regex patterns and lookup tables used by the access log parser."""
import re
from functools import lru_cache

# Locales shipped in the names maps of GeoIP2/GeoLite2 databases.
ALLOWED_GEOIP_LOCALES: list[str] = ["de", "en", "es", "fr", "ja", "pt-BR", "ru", "zh-CN"]
GEOIP_LOCALES_DEFAULT: list[str] = ["en"]

MONTHS: dict[str, int] = {
    "Jan": 1, "Feb": 2, "Mar": 3, "Apr": 4, "May": 5, "Jun": 6,
    "Jul": 7, "Aug": 8, "Sep": 9, "Oct": 10, "Nov": 11, "Dec": 12,
}

UNKNOWN_METHOD = "UNKNOWN"
DEFAULT_PATH = "/"
MISSING_FIELD = "-"


@lru_cache(maxsize=1)
def access_log_pattern() -> re.Pattern[str]:
    """Combined log format with an optional quoted referer/user-agent tail.

    Only origin, bracketed timestamp, quoted request, status and bytes are
    required. Anything after the byte count that is not the two quoted
    trailing fields is ignored.
    """
    return re.compile(
        r'^(?P<origin>\S+) \S+ \S+ '
        r'\[(?P<timestamp>[^\]]+)\] '
        r'"(?P<request>[^"]*)" '
        r'(?P<status>\d+) '
        r'(?P<bytes>\d+)'
        r'(?: "(?P<referer>[^"]*)" "(?P<user_agent>[^"]*)"|.*)'
    )
