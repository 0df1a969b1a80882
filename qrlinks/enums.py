"""Shared enums for the QR links application.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = [
    "HealthStatus",
    "RequestStatus",
    "CacheStatus",
    "ErrorCorrection",
    "OutputFormat",
    "DeviceType",
    "UTMKey",
]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    ERROR = "error"
    NOT_FOUND = "not_found"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class ErrorCorrection(StrEnum):
    """QR error-correction levels as stored in a link design."""

    LOW = "L"
    MEDIUM = "M"
    QUARTILE = "Q"
    HIGH = "H"


class OutputFormat(StrEnum):
    """Preferred download format recorded on a design."""

    SVG = "svg"
    PNG = "png"


class DeviceType(StrEnum):
    """Coarse device classes derived from the user agent."""

    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"
    BOT = "bot"
    OTHER = "other"
    UNKNOWN = "unknown"


class UTMKey(StrEnum):
    """Campaign attributes a target may carry."""

    SOURCE = "source"
    MEDIUM = "medium"
    CAMPAIGN = "campaign"

    @property
    def query_param(self) -> str:
        return f"utm_{self.value}"
