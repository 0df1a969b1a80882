"""Destination URL validation and UTM propagation."""

from collections.abc import Mapping
from urllib.parse import quote, unquote_plus, urlsplit, urlunsplit

import validators

from qrlinks.enums import UTMKey
from qrlinks.exceptions import ValidationError

__all__ = ["ALLOWED_SCHEMES", "MAX_URL_LENGTH", "normalize_url", "clean_utm", "merge_utm"]

ALLOWED_SCHEMES = ("http", "https")
MAX_URL_LENGTH = 2048


def normalize_url(raw: str) -> str:
    """Return ``raw`` stripped if it is an absolute http(s) URL.

    Raises:
        ValidationError: for anything else, including relative URLs and other
            schemes such as ``javascript:`` or ``ftp:``.
    """
    candidate = (raw or "").strip()
    if not candidate:
        raise ValidationError("URL is required")
    if len(candidate) > MAX_URL_LENGTH:
        raise ValidationError(f"URL must be at most {MAX_URL_LENGTH} characters")

    parts = urlsplit(candidate)
    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise ValidationError("Only http and https URLs are allowed")
    if not parts.netloc or not validators.url(candidate):
        raise ValidationError("Invalid URL")
    return candidate


def clean_utm(utm: Mapping[str, str | None] | None) -> dict[str, str]:
    """Keep known UTM keys with non-blank values, in canonical key order."""
    if not utm:
        return {}
    known = {key.value for key in UTMKey}
    unknown = set(utm) - known
    if unknown:
        raise ValidationError(f"Unknown UTM attributes: {', '.join(sorted(unknown))}")

    cleaned: dict[str, str] = {}
    for key in UTMKey:
        value = utm.get(key.value)
        if value is not None and str(value).strip():
            cleaned[key.value] = str(value).strip()
    return cleaned


def merge_utm(url: str, utm: Mapping[str, str] | None) -> str:
    """Set ``utm_<key>`` query parameters from a target's stored attributes.

    Only the ``utm_*`` parameters being set are touched; every other query
    segment is kept byte for byte and in its position. A stored attribute
    overwrites the first parameter of the same name in place (later
    duplicates are dropped), new ones are appended. Without stored
    attributes the URL is returned untouched.
    """
    attributes = clean_utm(utm)
    if not attributes:
        return url

    parts = urlsplit(url)
    wanted = {UTMKey(key).query_param: value for key, value in attributes.items()}

    merged: list[str] = []
    emitted: set[str] = set()
    for segment in parts.query.split("&") if parts.query else []:
        name = unquote_plus(segment.partition("=")[0])
        if name not in wanted:
            merged.append(segment)
        elif name not in emitted:
            merged.append(_utm_segment(name, wanted[name]))
            emitted.add(name)
    merged.extend(_utm_segment(name, value) for name, value in wanted.items() if name not in emitted)

    return urlunsplit((parts.scheme, parts.netloc, parts.path, "&".join(merged), parts.fragment))


def _utm_segment(name: str, value: str) -> str:
    return f"{name}={quote(value, safe='')}"
