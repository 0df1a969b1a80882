"""Pydantic schemas for request/response validation in the QR links service.

This module defines Pydantic models for API input validation and output
serialization. Every request body is an explicit model with ``extra="forbid"``
so unknown or malformed shapes are rejected before they reach the registry or
the ledger.

Schema Hierarchy
=================
::
    Design (stored sub-document)
    ├─ fg / bg: str (#RGB or #RRGGBB)
    ├─ ec: ErrorCorrection (L, M, Q, H)
    ├─ format: OutputFormat (svg, png)
    ├─ logo_url: str | None
    └─ logo_size_pct: float (clamped to [10, 40])

    LinkCreate (Input)          RetargetRequest (Input)
    ├─ name                     ├─ url
    ├─ url                      └─ utm: UTMAttributes | None
    ├─ utm: UTMAttributes | None
    ├─ custom_slug: str | None  LinkUpdate (Input)
    ├─ design: Design           ├─ name | None
    └─ tags: list[str]          ├─ slug | None
                                └─ tags | None
    DesignPatch (Input)
    └─ every Design field, optional

    LinkResponse (Output)       TargetResponse (Output)
    ├─ id, slug, name           ├─ id, link_id
    ├─ short_url, image_url     ├─ version, url
    ├─ design, tags, archived   ├─ utm
    ├─ current_target           └─ created_at
    └─ created_at, updated_at

    ResolvedLink (Redis cache payload)
    ├─ link_id, target_id
    ├─ url
    └─ utm

How to Use
===========
**Step 1 — Input validation**::
    @router.post("/api/links")
    async def create_link(payload: LinkCreate):
        # payload is already validated
        ...

**Step 2 — Programmatic design parsing**::
    design = parse_design({"fg": "#000", "logo_size_pct": 80})
    assert design.logo_size_pct == 40

Key Behaviours
===============
- Destination URLs are validated with the validators library and restricted
  to http/https.
- Logo size percentages are clamped, never rejected.
- Blank UTM values are dropped; unknown UTM keys are rejected.
- Response models are configured for ORM attribute mapping.
"""

import datetime
import math
import re
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from qrlinks.enums import ErrorCorrection, HealthStatus, OutputFormat
from qrlinks.exceptions import ValidationError
from qrlinks.urls import clean_utm, normalize_url

__all__ = [
    "DEFAULT_FG",
    "DEFAULT_BG",
    "DEFAULT_LOGO_SIZE_PCT",
    "MIN_LOGO_SIZE_PCT",
    "MAX_LOGO_SIZE_PCT",
    "Design",
    "DesignPatch",
    "UTMAttributes",
    "LinkCreate",
    "LinkUpdate",
    "RetargetRequest",
    "TargetResponse",
    "LinkResponse",
    "FirstScanResponse",
    "HealthResponse",
    "ResolvedLink",
    "parse_design",
    "clean_tags",
    "clean_name",
]

DEFAULT_FG = "#0b3d91"
DEFAULT_BG = "#ffffff"
DEFAULT_LOGO_SIZE_PCT = 22.0
MIN_LOGO_SIZE_PCT = 10.0
MAX_LOGO_SIZE_PCT = 40.0
MAX_NAME_LENGTH = 200
MAX_TAGS = 20
MAX_TAG_LENGTH = 50

HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
LOGO_SCHEMES = ("http://", "https://")


# ============================================================================
# SHARED FIELD CHECKS
# ============================================================================


def _check_color(value: str) -> str:
    candidate = str(value).strip()
    if not HEX_COLOR.fullmatch(candidate):
        raise ValidationError(f"Invalid color '{value}', expected #RGB or #RRGGBB")
    return candidate.lower()


def _check_error_correction(value: Any) -> ErrorCorrection:
    if isinstance(value, ErrorCorrection):
        return value
    normalized = str(value).strip().upper()
    for member in ErrorCorrection:
        if normalized in (member.value, member.name):
            return member
    raise ValidationError(f"Unknown error-correction level '{value}'")


def _check_logo_url(value: str | None) -> str | None:
    if value is None:
        return None
    candidate = str(value).strip()
    if not candidate:
        return None
    if candidate.startswith("data:image/") or candidate.startswith("/"):
        return candidate
    if candidate.lower().startswith(LOGO_SCHEMES):
        return candidate
    raise ValidationError("Logo must be an uploaded file path, an http(s) URL or an image data URI")


def _clamp_logo_size(value: Any) -> float:
    if value is None or value == "":
        return DEFAULT_LOGO_SIZE_PCT
    try:
        size = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Logo size must be a number, got {value!r}") from exc
    if math.isnan(size):
        return DEFAULT_LOGO_SIZE_PCT
    return max(MIN_LOGO_SIZE_PCT, min(MAX_LOGO_SIZE_PCT, size))


def clean_name(value: str) -> str:
    candidate = (value or "").strip()
    if not candidate:
        raise ValidationError("Name is required")
    if len(candidate) > MAX_NAME_LENGTH:
        raise ValidationError(f"Name must be at most {MAX_NAME_LENGTH} characters")
    return candidate


def clean_tags(tags: list[str] | None) -> list[str]:
    """Strip, drop blanks and de-duplicate while keeping first-seen order."""
    if not tags:
        return []
    seen: list[str] = []
    for tag in tags:
        candidate = str(tag).strip()
        if not candidate or candidate in seen:
            continue
        if len(candidate) > MAX_TAG_LENGTH:
            raise ValidationError(f"Tags must be at most {MAX_TAG_LENGTH} characters")
        seen.append(candidate)
    if len(seen) > MAX_TAGS:
        raise ValidationError(f"A link may carry at most {MAX_TAGS} tags")
    return seen


# ============================================================================
# DESIGN
# ============================================================================


class Design(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fg: str = DEFAULT_FG
    bg: str = DEFAULT_BG
    ec: ErrorCorrection = ErrorCorrection.MEDIUM
    format: OutputFormat = OutputFormat.SVG
    logo_url: str | None = None
    logo_size_pct: float = DEFAULT_LOGO_SIZE_PCT

    @field_validator("fg", "bg")
    @classmethod
    def validate_color(cls, v: str) -> str:
        return _check_color(v)

    @field_validator("ec", mode="before")
    @classmethod
    def validate_ec(cls, v: Any) -> ErrorCorrection:
        return _check_error_correction(v)

    @field_validator("format", mode="before")
    @classmethod
    def validate_format(cls, v: Any) -> Any:
        return str(v).strip().lower() if v is not None else OutputFormat.SVG

    @field_validator("logo_url", mode="before")
    @classmethod
    def validate_logo_url(cls, v: str | None) -> str | None:
        return _check_logo_url(v)

    @field_validator("logo_size_pct", mode="before")
    @classmethod
    def validate_logo_size(cls, v: Any) -> float:
        return _clamp_logo_size(v)


class DesignPatch(BaseModel):
    """Partial design update; only the fields that were sent are applied."""

    model_config = ConfigDict(extra="forbid")

    fg: str | None = None
    bg: str | None = None
    ec: ErrorCorrection | None = None
    format: OutputFormat | None = None
    logo_url: str | None = None
    logo_size_pct: float | None = None

    @field_validator("fg", "bg")
    @classmethod
    def validate_color(cls, v: str | None) -> str | None:
        return _check_color(v) if v is not None else None

    @field_validator("ec", mode="before")
    @classmethod
    def validate_ec(cls, v: Any) -> ErrorCorrection | None:
        return _check_error_correction(v) if v is not None else None

    @field_validator("format", mode="before")
    @classmethod
    def validate_format(cls, v: Any) -> Any:
        return str(v).strip().lower() if v is not None else None

    @field_validator("logo_url", mode="before")
    @classmethod
    def validate_logo_url(cls, v: str | None) -> str | None:
        return _check_logo_url(v)

    @field_validator("logo_size_pct", mode="before")
    @classmethod
    def validate_logo_size(cls, v: Any) -> float | None:
        return _clamp_logo_size(v) if v is not None else None


def parse_design(data: dict[str, Any] | Design | None) -> Design:
    """Validate a stored or caller-supplied design, raising ``ValidationError``."""
    if isinstance(data, Design):
        return data
    try:
        return Design.model_validate(data or {})
    except PydanticValidationError as exc:
        raise ValidationError(_describe(exc)) from exc


def _describe(exc: PydanticValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = str(error.get("msg", "invalid value")).removeprefix("Value error, ")
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages)


# ============================================================================
# REQUEST BODIES
# ============================================================================


class UTMAttributes(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: str | None = Field(None, max_length=200, description="utm_source, e.g. 'newsletter'")
    medium: str | None = Field(None, max_length=200, description="utm_medium, e.g. 'email'")
    campaign: str | None = Field(None, max_length=200, description="utm_campaign, e.g. 'spring-launch'")

    def as_dict(self) -> dict[str, str]:
        return clean_utm(self.model_dump())


class LinkCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    url: str
    utm: UTMAttributes | None = None
    custom_slug: str | None = None
    design: Design = Field(default_factory=Design)
    tags: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return clean_name(v)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return normalize_url(v)

    @field_validator("custom_slug")
    @classmethod
    def validate_custom_slug(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str]) -> list[str]:
        return clean_tags(v)


class LinkUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    slug: str | None = None
    tags: list[str] | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str | None) -> str | None:
        return clean_name(v) if v is not None else None

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str] | None) -> list[str] | None:
        return clean_tags(v) if v is not None else None


class RetargetRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    utm: UTMAttributes | None = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return normalize_url(v)


# ============================================================================
# RESPONSES
# ============================================================================


class TargetResponse(BaseModel):
    id: uuid.UUID
    link_id: uuid.UUID
    version: int
    url: str
    utm: dict[str, str]
    created_at: datetime.datetime

    model_config = {"from_attributes": True}


class LinkResponse(BaseModel):
    id: uuid.UUID
    slug: str
    name: str
    short_url: str
    image_url: str
    design: Design
    tags: list[str]
    archived: bool
    current_target: TargetResponse | None
    created_at: datetime.datetime
    updated_at: datetime.datetime


class FirstScanResponse(BaseModel):
    first_scan_date: datetime.datetime | None


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ResolvedLink(BaseModel):
    """Redis cache payload for a slug's live destination."""

    link_id: uuid.UUID
    target_id: uuid.UUID
    url: str
    utm: dict[str, str] = Field(default_factory=dict)
