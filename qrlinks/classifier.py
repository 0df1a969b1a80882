"""Scan classification: prefetch/bot detection and scan context assembly.

Flow Diagram — describe()
=========================
::
    ┌─────────────┐
    │ headers, UA │
    │ client IP   │
    └──────┬──────┘
           ▼
    ┌─────────────┐     prefetch header?     ┌─────────────┐
    │ is_prefetch │ ───── crawler token? ──▶ │ flag = True │
    └──────┬──────┘                          └─────────────┘
           ▼
    ┌─────────────┐
    │ UA parser   │  device / os / browser
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Geo lookup  │  country / region / city / lat / lon
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Region      │  empty region + city-state with coordinates
    │ refinement  │  → bounding-box sub-region, else city, else country
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ ScanContext │
    └─────────────┘

Key Behaviours
===============
- Detection is a best-effort denylist. Bots that do not identify themselves
  are expected to slip through; the goal is keeping obvious link unfurls out
  of human scan counts.
- Header names are matched case-insensitively.
- Parsing and geolocation are delegated to the injected collaborators.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace

from qrlinks.agents import AgentInfo, UserAgentParser
from qrlinks.enums import DeviceType
from qrlinks.geo import GeoLookup, GeoPoint

__all__ = [
    "CRAWLER_TOKENS",
    "SUBREGION_BOXES",
    "Classification",
    "ScanContext",
    "ScanClassifier",
    "refine_region",
]

# Header name -> values (lower-case) that mark a speculative or preview request.
PREFETCH_HEADER_VALUES: dict[str, tuple[str, ...]] = {
    "x-moz": ("prefetch",),
    "purpose": ("prefetch", "preview"),
    "x-purpose": ("preview", "prefetch"),
}
# Headers whose mere presence marks a preview fetch.
PREVIEW_PRESENCE_HEADERS = ("x-facebook-user-agent",)

CRAWLER_TOKENS = (
    "facebookexternalhit",
    "twitterbot",
    "linkedinbot",
    "whatsapp",
    "telegrambot",
    "slackbot",
    "discordbot",
    "skypeuripreview",
    "preview",
    "crawler",
    "bot",
)

# country -> (entity name, ((sub-region, lat_min, lat_max, lon_min, lon_max), ...))
SUBREGION_BOXES: dict[str, tuple[str, tuple[tuple[str, float, float, float, float], ...]]] = {
    "SG": (
        "Singapore",
        (
            ("Central", 1.27, 1.31, 103.82, 103.88),
            ("North", 1.38, 1.45, 103.74, 103.85),
            ("North-East", 1.32, 1.42, 103.87, 103.96),
            ("East", 1.31, 1.37, 103.88, 103.99),
            ("West", 1.30, 1.39, 103.68, 103.78),
        ),
    ),
}


@dataclass(frozen=True)
class Classification:
    is_prefetch: bool = False
    device: str = DeviceType.UNKNOWN
    os: str = "unknown"
    browser: str = "unknown"


@dataclass(frozen=True)
class ScanContext:
    """Flat record of everything derived from one inbound hit."""

    ip: str | None = None
    user_agent: str | None = None
    language: str | None = None
    referer: str | None = None
    classification: Classification = field(default_factory=Classification)
    geo: GeoPoint = field(default_factory=GeoPoint)

    @property
    def is_prefetch(self) -> bool:
        return self.classification.is_prefetch


def _lower_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {str(name).lower(): str(value) for name, value in headers.items()}


def refine_region(point: GeoPoint) -> GeoPoint:
    """Fill an empty region from the sub-region table, city or country."""
    if point.region:
        return point

    entity = SUBREGION_BOXES.get((point.country or "").upper())
    if entity is not None and point.has_coordinates:
        name, boxes = entity
        for region, lat_min, lat_max, lon_min, lon_max in boxes:
            if lat_min <= point.lat <= lat_max and lon_min <= point.lon <= lon_max:
                return replace(point, region=region)
        return replace(point, region=name)

    fallback = point.city or point.country
    return replace(point, region=fallback) if fallback else point


class ScanClassifier:
    def __init__(self, agent_parser: UserAgentParser, geo_lookup: GeoLookup) -> None:
        self._agents = agent_parser
        self._geo = geo_lookup

    def is_prefetch(self, headers: Mapping[str, str], user_agent: str | None) -> bool:
        lowered = _lower_headers(headers)

        for name, markers in PREFETCH_HEADER_VALUES.items():
            if lowered.get(name, "").strip().lower() in markers:
                return True
        if "prefetch" in lowered.get("sec-purpose", "").lower():
            return True
        if any(name in lowered for name in PREVIEW_PRESENCE_HEADERS):
            return True

        agent = (user_agent or "").lower()
        return any(token in agent for token in CRAWLER_TOKENS)

    def classify(self, headers: Mapping[str, str], user_agent: str | None) -> Classification:
        info: AgentInfo = self._agents.parse(user_agent)
        return Classification(
            is_prefetch=self.is_prefetch(headers, user_agent),
            device=info.device,
            os=info.os,
            browser=info.browser,
        )

    def locate(self, ip: str | None) -> GeoPoint:
        return refine_region(self._geo.lookup(ip))

    def describe(self, headers: Mapping[str, str], client_ip: str | None) -> ScanContext:
        lowered = _lower_headers(headers)
        user_agent = lowered.get("user-agent")
        return ScanContext(
            ip=client_ip,
            user_agent=user_agent,
            language=lowered.get("accept-language"),
            referer=lowered.get("referer"),
            classification=self.classify(lowered, user_agent),
            geo=self.locate(client_ip),
        )
