"""SVG rendering of saved links and unsaved design previews.

Flow Diagram — render()
=======================
::
    ┌─────────────┐
    │ content +   │
    │ Design      │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ encode_     │  fg/bg colors, error correction, margin
    │ vector()    │
    └──────┬──────┘
           ▼
     logo_url set? ── no ──▶ plain SVG
           │ yes
           ▼
    ┌─────────────┐
    │ LogoResolver│  upload or remote logo → data URI
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ compose()   │  knockout + image (+ debug box)
    └──────┬──────┘
           ▼
       SVG markup   (any overlay failure → plain SVG)

Key Behaviours
===============
- Saved links encode ``<PUBLIC_BASE_URL>/r/<slug>``, never the destination,
  so retargeting does not change the printed code.
- Previews encode a fixed placeholder and touch no link state. They never
  fetch remote logos, only uploads and data URIs are embedded.
- Archived links are not rendered.
"""

import logging
import time
from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram
from sqlalchemy import select

from qrlinks.encoder import encode_vector
from qrlinks.exceptions import NotFoundError, ValidationError
from qrlinks.models import Link
from qrlinks.overlay import OverlayOptions, compose
from qrlinks.schemas import Design, parse_design

if TYPE_CHECKING:
    from qrlinks.dependencies import RequestContext

__all__ = ["LinkRenderer", "short_url"]

RENDER_DURATION = Histogram(
    "qrlinks_render_duration_seconds",
    "Time taken to render a QR image",
    ["kind"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)
LOGO_OVERLAY_FAILURES_TOTAL = Counter(
    "qrlinks_logo_overlay_failures_total",
    "Renders that fell back to a plain code because the logo overlay failed",
)


def short_url(base_url: str, slug: str) -> str:
    return f"{base_url.rstrip('/')}/r/{slug}"


class LinkRenderer:
    def __init__(self, ctx: "RequestContext") -> None:
        self._db = ctx.database
        self._logos = ctx.logo_resolver
        self._logger: logging.Logger | logging.LoggerAdapter = ctx.logger
        self._settings = ctx.settings

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "LinkRenderer":
        return cls(ctx)

    async def render_link(self, slug: str, debug: bool = False) -> str:
        """Render the stored design of an active link.

        Raises:
            NotFoundError: unknown or archived slug.
        """
        stored = (
            await self._db.execute(select(Link.design).where(Link.slug == slug, Link.archived.is_(False)))
        ).scalar_one_or_none()
        if stored is None:
            raise NotFoundError()

        try:
            design = parse_design(stored)
        except ValidationError as exc:
            self._logger.error(f"Stored design of {slug} is invalid, rendering defaults: {exc}")
            design = Design()

        start_time = time.perf_counter()
        try:
            return await self.render(short_url(self._settings.PUBLIC_BASE_URL, slug), design, debug)
        finally:
            RENDER_DURATION.labels(kind="link").observe(time.perf_counter() - start_time)

    async def render_preview(self, design: Design, debug: bool = False) -> str:
        start_time = time.perf_counter()
        try:
            return await self.render(self._settings.PREVIEW_CONTENT, design, debug, allow_remote=False)
        finally:
            RENDER_DURATION.labels(kind="preview").observe(time.perf_counter() - start_time)

    async def render(self, content: str, design: Design, debug: bool = False, allow_remote: bool = True) -> str:
        svg = encode_vector(
            content,
            error_correction=design.ec,
            margin=self._settings.QR_MARGIN,
            pixel_size=self._settings.QR_PIXEL_SIZE,
            dark=design.fg,
            light=design.bg,
        )
        if not design.logo_url:
            return svg

        try:
            href = await self._logos.resolve(design.logo_url, allow_remote=allow_remote)
            options = OverlayOptions(background=design.bg, border=design.fg, debug=debug)
            return compose(svg, href, design.logo_size_pct, options)
        except Exception as exc:
            LOGO_OVERLAY_FAILURES_TOTAL.inc()
            self._logger.error(f"Logo overlay failed, serving plain code: {exc}")
            return svg
