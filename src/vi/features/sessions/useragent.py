from __future__ import annotations

import re
from dataclasses import dataclass

_TABLET_RE = re.compile(r"(tablet|ipad|playbook|silk)|(android(?!.*mobi))", re.IGNORECASE)
_MOBILE_RE = re.compile(
    r"mobile|ip(hone|od)|android|blackberry|iemobile|kindle|silk-accelerated|(hpw|web)os|opera m(obi|ini)",
    re.IGNORECASE,
)

# (substring, label); first hit wins, so order matters
_BROWSERS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("firefox", "fxios"), "Firefox"),
    (("samsungbrowser", "samsung"), "Samsung Internet"),
    (("opera", "opr/"), "Opera"),
    (("trident", "msie"), "Internet Explorer"),
    (("edge", "edg/"), "Edge"),
    (("chrome", "crios"), "Chrome"),
    (("safari",), "Safari"),
)

# Mobile platforms are checked first: their UAs also mention "linux" / "mac os x".
_SYSTEMS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("android",), "Android"),
    (("iphone", "ipad", "ipod", "ios"), "iOS"),
    (("windows", "win64", "win32"), "Windows"),
    (("mac",), "MacOS"),
    (("linux", "x11"), "Linux"),
)

UNKNOWN = "Unknown"


@dataclass(frozen=True, slots=True)
class UserAgentInfo:
    device_type: str  # Desktop | Mobile | Tablet
    browser: str
    os: str


def _first_label(ua: str, table: tuple[tuple[tuple[str, ...], str], ...]) -> str:
    for needles, label in table:
        if any(n in ua for n in needles):
            return label
    return UNKNOWN


def parse_user_agent(user_agent: str | None) -> UserAgentInfo:
    ua = (user_agent or "").lower()

    if _TABLET_RE.search(ua):
        device = "Tablet"
    elif _MOBILE_RE.search(ua):
        device = "Mobile"
    else:
        device = "Desktop"

    return UserAgentInfo(
        device_type=device,
        browser=_first_label(ua, _BROWSERS),
        os=_first_label(ua, _SYSTEMS),
    )
