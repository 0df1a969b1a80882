"""Scan classifier tests: prefetch detection, UA parsing and region refinement."""

import pytest

from qrlinks.agents import UserAgentParser
from qrlinks.classifier import ScanClassifier, refine_region
from qrlinks.geo import GeoLookup, GeoPoint

CHROME_DESKTOP = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPAD = (
    "Mozilla/5.0 (iPad; CPU OS 16_6 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1"
)


@pytest.fixture
def classifier() -> ScanClassifier:
    return ScanClassifier(UserAgentParser(), GeoLookup())


def test_link_unfurler_is_prefetch(classifier: ScanClassifier) -> None:
    assert classifier.is_prefetch({}, "facebookexternalhit/1.1") is True
    assert classifier.is_prefetch({}, "Mozilla/5.0 (compatible; Discordbot/2.0)") is True
    assert classifier.is_prefetch({}, "WhatsApp/2.23.20.0 A") is True


def test_desktop_browser_is_not_prefetch(classifier: ScanClassifier) -> None:
    assert classifier.is_prefetch({}, CHROME_DESKTOP) is False
    assert classifier.is_prefetch({}, None) is False


@pytest.mark.parametrize(
    "headers",
    [
        {"X-Moz": "prefetch"},
        {"Purpose": "prefetch"},
        {"purpose": "Preview"},
        {"Sec-Purpose": "prefetch;prerender"},
        {"X-Purpose": "preview"},
        {"X-Facebook-User-Agent": "anything"},
    ],
)
def test_prefetch_headers(classifier: ScanClassifier, headers: dict[str, str]) -> None:
    assert classifier.is_prefetch(headers, CHROME_DESKTOP) is True


def test_unrelated_purpose_header_is_ignored(classifier: ScanClassifier) -> None:
    assert classifier.is_prefetch({"Purpose": "navigate"}, CHROME_DESKTOP) is False


def test_classify_devices(classifier: ScanClassifier) -> None:
    desktop = classifier.classify({}, CHROME_DESKTOP)
    assert desktop.device == "desktop"
    assert desktop.browser.startswith("Chrome 120")
    assert desktop.os.startswith("Windows")
    assert desktop.is_prefetch is False

    assert classifier.classify({}, IPAD).device == "tablet"
    assert classifier.classify({}, "Googlebot/2.1 (+http://www.google.com/bot.html)").device == "bot"
    assert classifier.classify({}, None).device == "unknown"


def test_describe_reads_headers(classifier: ScanClassifier) -> None:
    context = classifier.describe(
        {"User-Agent": CHROME_DESKTOP, "Accept-Language": "en-GB", "Referer": "https://news.example"},
        "127.0.0.1",
    )
    assert context.ip == "127.0.0.1"
    assert context.user_agent == CHROME_DESKTOP
    assert context.language == "en-GB"
    assert context.referer == "https://news.example"
    assert context.is_prefetch is False
    # no database and a loopback address: no location
    assert context.geo == GeoPoint()


def test_geo_lookup_without_database() -> None:
    lookup = GeoLookup(None)
    assert lookup.lookup("8.8.8.8") == GeoPoint()
    assert lookup.lookup("10.0.0.1") == GeoPoint()
    assert lookup.lookup("garbage") == GeoPoint()


def test_geo_lookup_with_unreadable_database(tmp_path) -> None:
    lookup = GeoLookup(str(tmp_path / "missing.mmdb"))
    assert lookup.lookup("8.8.8.8") == GeoPoint()


@pytest.mark.parametrize(
    "lat, lon, region",
    [
        (1.29, 103.85, "Central"),
        (1.43, 103.79, "North"),
        (1.37, 103.93, "North-East"),
        (1.33, 103.98, "East"),
        (1.34, 103.70, "West"),
        (1.20, 103.60, "Singapore"),
    ],
)
def test_singapore_sub_regions(lat: float, lon: float, region: str) -> None:
    point = refine_region(GeoPoint(country="SG", city="Singapore", lat=lat, lon=lon))
    assert point.region == region


def test_region_fallbacks() -> None:
    assert refine_region(GeoPoint(country="GB", region="England", city="London")).region == "England"
    assert refine_region(GeoPoint(country="FR", city="Paris")).region == "Paris"
    assert refine_region(GeoPoint(country="FR")).region == "FR"
    assert refine_region(GeoPoint(country="SG", city="Singapore")).region == "Singapore"
    assert refine_region(GeoPoint()).region is None
