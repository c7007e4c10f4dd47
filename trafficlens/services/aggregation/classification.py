"""Traffic source and device classification rules.

Each classifier is an ordered tuple of ``(category, predicate)`` rules; the
first predicate that matches wins. The order is part of the behavior:
search engines are checked before social networks, and bots before
tablets before phones before desktops.
"""
from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from trafficlens.services.logparser.constants import MISSING_FIELD


class TrafficSource(str, Enum):
    DIRECT = "direct"
    SEARCH = "search"
    SOCIAL = "social"
    REFERRAL = "referral"


class DeviceClass(str, Enum):
    BOT = "bot"
    TABLET = "tablet"
    MOBILE = "mobile"
    DESKTOP = "desktop"
    OTHER = "other"


Rule = tuple[str, Callable[[str], bool]]

# Referer substrings, matched case-sensitively.
SEARCH_ENGINES: tuple[tuple[str, str], ...] = (
    ("google", "google."),
    ("bing", "bing."),
    ("baidu", "baidu."),
    ("sogou", "sogou."),
    ("so", "so.com"),
)
SOCIAL_DOMAINS: tuple[str, ...] = ("facebook.", "twitter.", "weibo.")

# User-agent substrings, matched against the lower-cased user agent.
BOT_TOKENS: tuple[str, ...] = (
    "bot",
    "spider",
    "crawler",
    "googlebot",
    "baiduspider",
    "bingbot",
    "yandexbot",
    "slurp",
    "duckduckbot",
    "python-requests",
    "go-http-client",
    "censysinspect",
)
TABLET_TOKENS: tuple[str, ...] = ("ipad", "tablet", "kindle", "playbook")
MOBILE_TOKENS: tuple[str, ...] = (
    "iphone",
    "ipod",
    "windows phone",
    "blackberry",
    "webos",
    "iemobile",
    "mobile",
)
DESKTOP_TOKENS: tuple[str, ...] = ("windows", "macintosh", "x11", "ubuntu")


def _contains_any(tokens: tuple[str, ...]) -> Callable[[str], bool]:
    return lambda value: any(token in value for token in tokens)


def _is_direct(referer: str) -> bool:
    return not referer or referer == MISSING_FIELD


def _is_search(referer: str) -> bool:
    return search_engine(referer) is not None


def _is_android_tablet(ua: str) -> bool:
    return "android" in ua and "mobile" not in ua


def _is_android_phone(ua: str) -> bool:
    return "android" in ua and "mobile" in ua


def _is_desktop_browser(ua: str) -> bool:
    if "linux" in ua and "android" not in ua:
        return True
    if "firefox" in ua and "mobile" not in ua:
        return True
    return "chrome" in ua and "mobile" not in ua and "android" not in ua


SOURCE_RULES: tuple[Rule, ...] = (
    (TrafficSource.DIRECT.value, _is_direct),
    (TrafficSource.SEARCH.value, _is_search),
    (TrafficSource.SOCIAL.value, _contains_any(SOCIAL_DOMAINS)),
)

DEVICE_RULES: tuple[Rule, ...] = (
    (DeviceClass.BOT.value, _contains_any(BOT_TOKENS)),
    (DeviceClass.TABLET.value, _contains_any(TABLET_TOKENS)),
    (DeviceClass.TABLET.value, _is_android_tablet),
    (DeviceClass.MOBILE.value, _is_android_phone),
    (DeviceClass.MOBILE.value, _contains_any(MOBILE_TOKENS)),
    (DeviceClass.DESKTOP.value, _contains_any(DESKTOP_TOKENS)),
    (DeviceClass.DESKTOP.value, _is_desktop_browser),
)


def first_match(rules: tuple[Rule, ...], value: str, default: str) -> str:
    """Return the category of the first rule whose predicate holds."""
    for category, predicate in rules:
        if predicate(value):
            return category
    return default


def search_engine(referer: str) -> str | None:
    """Return the search engine a referer points to, if any."""
    for engine, domain in SEARCH_ENGINES:
        if domain in referer:
            return engine
    return None


def classify_source(referer: str | None) -> str:
    """Classify a referer as direct, search, social or referral."""
    return first_match(SOURCE_RULES, referer or "", TrafficSource.REFERRAL.value)


def classify_device(user_agent: str | None) -> str:
    """Classify a user agent as bot, tablet, mobile, desktop or other."""
    return first_match(DEVICE_RULES, (user_agent or "").lower(), DeviceClass.OTHER.value)
