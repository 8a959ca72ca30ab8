"""Coarse user-agent classification.

Mirrors the checks the browser client runs so that server-tracked events
carry the same ``$os``/``$browser``/``$device`` values. The order of the
checks matters: many user agents mention several products.
"""

from __future__ import annotations

import re

_BLOCKED_RE = re.compile(
    r"google web preview|baiduspider|yandexbot|bingbot|googlebot|yahoo! slurp",
    re.IGNORECASE,
)
_BLACKBERRY_RE = re.compile(r"BlackBerry|PlayBook|BB10", re.IGNORECASE)


def is_blocked(user_agent: str) -> bool:
    """Return ``True`` for crawlers whose hits must not be tracked."""
    return bool(_BLOCKED_RE.search(user_agent))


def operating_system(user_agent: str) -> str:
    if re.search(r"Windows", user_agent, re.IGNORECASE):
        return "Windows Mobile" if "Phone" in user_agent else "Windows"
    if re.search(r"iPhone|iPad|iPod", user_agent):
        return "iOS"
    if "Android" in user_agent:
        return "Android"
    if _BLACKBERRY_RE.search(user_agent):
        return "BlackBerry"
    if re.search(r"Mac", user_agent, re.IGNORECASE):
        return "Mac OS X"
    if "Linux" in user_agent:
        return "Linux"
    return ""


def browser(user_agent: str) -> str:
    if "Opera" in user_agent:
        return "Opera Mini" if "Mini" in user_agent else "Opera"
    if _BLACKBERRY_RE.search(user_agent):
        return "BlackBerry"
    if "Chrome" in user_agent:
        return "Chrome"
    if "Android" in user_agent:
        return "Android Mobile"
    if "Apple" in user_agent and "Safari" in user_agent:
        return "Mobile Safari" if "Mobile" in user_agent else "Safari"
    if "Konqueror" in user_agent:
        return "Konqueror"
    if "Firefox" in user_agent:
        return "Firefox"
    if "MSIE" in user_agent:
        return "Internet Explorer"
    if "Gecko" in user_agent:
        return "Mozilla"
    return ""


def device(user_agent: str) -> str:
    if re.search(r"Windows Phone", user_agent, re.IGNORECASE) or "WPDesktop" in user_agent:
        return "Windows Phone"
    if "iPad" in user_agent:
        return "iPad"
    if "iPod" in user_agent:
        return "iPod Touch"
    if "iPhone" in user_agent:
        return "iPhone"
    if _BLACKBERRY_RE.search(user_agent):
        return "BlackBerry"
    if "Android" in user_agent:
        return "Android"
    return ""
