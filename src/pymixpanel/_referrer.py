"""Referrer and acquisition parsing."""

from __future__ import annotations

import re
from collections.abc import Mapping
from urllib.parse import parse_qs, urlsplit

from pymixpanel._constants import CAMPAIGN_KEYWORDS

# (engine, pattern anchored at the start of the referrer, keyword parameter)
_SEARCH_ENGINES: tuple[tuple[str, re.Pattern[str], str], ...] = (
    ("google", re.compile(r"https?://(.*)google\.([^/?]*)"), "q"),
    ("bing", re.compile(r"https?://(.*)bing\.com"), "q"),
    ("yahoo", re.compile(r"https?://(.*)yahoo\.com"), "p"),
    ("duckduckgo", re.compile(r"https?://(.*)duckduckgo\.com"), "q"),
)


def search_engine(referrer: str) -> str | None:
    """Name of the search engine *referrer* points at, if any."""
    for name, pattern, _param in _SEARCH_ENGINES:
        if pattern.match(referrer):
            return name
    return None


def search_keyword(referrer: str, engine: str) -> str | None:
    """Search terms carried by an engine referrer (``q``, or ``p`` for Yahoo)."""
    param = next((p for name, _pattern, p in _SEARCH_ENGINES if name == engine), None)
    if param is None:
        return None
    values = parse_qs(urlsplit(referrer).query).get(param)
    return values[0] if values else None


def search_properties(referrer: str) -> dict[str, str]:
    """``$search_engine``/``mp_keyword`` super properties for *referrer*."""
    engine = search_engine(referrer) if referrer else None
    if engine is None:
        return {}
    props = {"$search_engine": engine}
    keyword = search_keyword(referrer, engine)
    if keyword:
        props["mp_keyword"] = keyword
    return props


def referring_domain(referrer: str) -> str:
    return urlsplit(referrer).netloc if referrer else ""


def campaign_params(query: Mapping[str, str]) -> dict[str, str]:
    """UTM parameters present (and non-empty) in the request query."""
    return {key: query[key] for key in CAMPAIGN_KEYWORDS if query.get(key)}
