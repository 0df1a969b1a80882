"""Logo overlay composition for vector QR images.

This module places an already-resolved, directly embeddable logo at the
centre of an SVG QR code, on top of a background-colored knockout that keeps
the surrounding modules readable.

Geometry
========
::
    ┌──────────────────────────── extent width ─┐
    │                                           │
    │          kx,ky ┌──────────────┐           │
    │                │  x,y ┌────┐  │           │
    │                │      │LOGO│  │ ← pad     │
    │                │      └────┘  │           │
    │                └──────────────┘           │
    │                                           │
    └───────────────────────────────────────────┘

    logo = size_pct / 100 * min(width, height)
    x    = (width  - logo) / 2
    y    = (height - logo) / 2
    pad  = 6% of logo, knockout clamped to the extent

How to Use
===========
::
    svg = encode_vector("https://qr.example/r/promo")
    svg = compose(svg, "data:image/png;base64,...", 22, OverlayOptions(background="#ffffff"))

Key Behaviours
===============
- The extent comes from numeric ``width``/``height`` on the root element,
  falling back to the ``viewBox`` size.
- When the extent cannot be determined the input is returned unchanged.
- When ``width``/``height`` and a differently sized ``viewBox`` are both
  present, the overlay group is scaled so extent units land on the canvas.
- Output is deterministic for identical inputs.
"""

import math
import re
from dataclasses import dataclass
from xml.sax.saxutils import quoteattr

__all__ = ["Extent", "OverlayGeometry", "OverlayOptions", "parse_extent", "compute_geometry", "compose"]

KNOCKOUT_PADDING_RATIO = 0.06
BORDER_WIDTH_RATIO = 0.004
XLINK_NS = "http://www.w3.org/1999/xlink"

_SVG_OPEN = re.compile(r"<svg\b[^>]*>", re.IGNORECASE)
_LENGTH = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(?:px)?\s*$", re.IGNORECASE)
_NUMBER_SEPARATOR = re.compile(r"[\s,]+")


@dataclass(frozen=True)
class Extent:
    width: float
    height: float
    view_box: tuple[float, float, float, float] | None = None
    from_dimensions: bool = True


@dataclass(frozen=True)
class OverlayGeometry:
    logo_size: float
    x: float
    y: float
    pad: float
    knockout_x: float
    knockout_y: float
    knockout_width: float
    knockout_height: float


@dataclass(frozen=True)
class OverlayOptions:
    background: str = "#ffffff"
    border: str | None = None
    debug: bool = False


def _attribute(tag: str, name: str) -> str | None:
    match = re.search(rf'(?<![\w:-]){name}\s*=\s*(["\'])(.*?)\1', tag, re.IGNORECASE | re.DOTALL)
    return match.group(2) if match else None


def _length(value: str | None) -> float | None:
    if value is None:
        return None
    match = _LENGTH.match(value)
    if not match:
        return None
    length = float(match.group(1))
    return length if length > 0 else None


def _view_box(value: str | None) -> tuple[float, float, float, float] | None:
    if value is None:
        return None
    parts = [part for part in _NUMBER_SEPARATOR.split(value.strip()) if part]
    if len(parts) != 4:
        return None
    try:
        min_x, min_y, width, height = (float(part) for part in parts)
    except ValueError:
        return None
    if width <= 0 or height <= 0:
        return None
    return min_x, min_y, width, height


def parse_extent(svg: str) -> Extent | None:
    """Read the drawable extent declared on the root ``<svg>`` element."""
    match = _SVG_OPEN.search(svg or "")
    if not match:
        return None
    tag = match.group(0)

    width = _length(_attribute(tag, "width"))
    height = _length(_attribute(tag, "height"))
    view_box = _view_box(_attribute(tag, "viewBox"))

    if width is not None and height is not None:
        return Extent(width=width, height=height, view_box=view_box, from_dimensions=True)
    if view_box is not None:
        return Extent(width=view_box[2], height=view_box[3], view_box=view_box, from_dimensions=False)
    return None


def compute_geometry(width: float, height: float, size_pct: float) -> OverlayGeometry:
    """Centered logo box and its clamped knockout for a ``width`` x ``height`` canvas.

    Raises:
        ValueError: when the extent is not positive.
    """
    if not (width > 0 and height > 0):
        raise ValueError(f"extent must be positive, got {width!r}x{height!r}")
    logo = size_pct / 100 * min(width, height)
    x = (width - logo) / 2
    y = (height - logo) / 2
    pad = logo * KNOCKOUT_PADDING_RATIO

    left = max(0.0, x - pad)
    top = max(0.0, y - pad)
    right = min(width, x + logo + pad)
    bottom = min(height, y + logo + pad)
    return OverlayGeometry(
        logo_size=logo,
        x=x,
        y=y,
        pad=pad,
        knockout_x=left,
        knockout_y=top,
        knockout_width=right - left,
        knockout_height=bottom - top,
    )


def _fmt(value: float) -> str:
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


def _with_xlink(svg: str) -> str:
    match = _SVG_OPEN.search(svg)
    tag = match.group(0)
    if "xmlns:xlink" in tag:
        return svg
    patched = f'{tag[:-1]} xmlns:xlink="{XLINK_NS}">'
    return svg[: match.start()] + patched + svg[match.end():]


def _transform(extent: Extent) -> str | None:
    if not extent.from_dimensions or extent.view_box is None:
        return None
    min_x, min_y, vb_width, vb_height = extent.view_box
    scale_x = vb_width / extent.width
    scale_y = vb_height / extent.height
    if min_x == 0 and min_y == 0 and scale_x == 1 and scale_y == 1:
        return None
    return f"translate({_fmt(min_x)} {_fmt(min_y)}) scale({_fmt(scale_x)} {_fmt(scale_y)})"


def _overlay_elements(geometry: OverlayGeometry, extent: Extent, logo_href: str, options: OverlayOptions) -> list[str]:
    g = geometry
    shortest = min(extent.width, extent.height)
    href = quoteattr(logo_href)

    knockout = (
        f'<rect x="{_fmt(g.knockout_x)}" y="{_fmt(g.knockout_y)}" '
        f'width="{_fmt(g.knockout_width)}" height="{_fmt(g.knockout_height)}" '
        f'rx="{_fmt(g.pad)}" ry="{_fmt(g.pad)}" fill={quoteattr(options.background)}'
    )
    if options.border:
        knockout += f" stroke={quoteattr(options.border)} stroke-width=\"{_fmt(shortest * BORDER_WIDTH_RATIO)}\""
    knockout += "/>"

    elements = [
        knockout,
        f'<image href={href} xlink:href={href} x="{_fmt(g.x)}" y="{_fmt(g.y)}" '
        f'width="{_fmt(g.logo_size)}" height="{_fmt(g.logo_size)}" preserveAspectRatio="xMidYMid meet"/>',
    ]

    if options.debug:
        font_size = shortest * 0.025
        label = f"logoSize={g.logo_size:.2f} x={g.x:.2f} y={g.y:.2f}"
        elements.append(
            f'<rect x="{_fmt(g.x)}" y="{_fmt(g.y)}" width="{_fmt(g.logo_size)}" height="{_fmt(g.logo_size)}" '
            f'fill="none" stroke="red" stroke-width="{_fmt(shortest * 0.002)}"/>'
        )
        elements.append(
            f'<text x="{_fmt(font_size)}" y="{_fmt(font_size * 1.5)}" fill="red" '
            f'font-size="{_fmt(font_size)}" font-family="monospace">{label}</text>'
        )
    return elements


def compose(svg: str, logo_href: str | None, size_pct: float, options: OverlayOptions | None = None) -> str:
    """Return ``svg`` with the logo overlay appended before ``</svg>``.

    A no-op when there is no logo, when the extent cannot be determined, when
    ``size_pct`` is not a positive number, or when the markup has no closing
    root tag.
    """
    options = options or OverlayOptions()
    if not logo_href or not isinstance(size_pct, (int, float)) or not math.isfinite(size_pct) or size_pct <= 0:
        return svg

    extent = parse_extent(svg)
    if extent is None or "</svg>" not in svg:
        return svg

    geometry = compute_geometry(extent.width, extent.height, size_pct)
    elements = "".join(_overlay_elements(geometry, extent, logo_href, options))
    transform = _transform(extent)
    group = f'<g transform="{transform}">{elements}</g>' if transform else f"<g>{elements}</g>"

    composed = _with_xlink(svg)
    closing = composed.rfind("</svg>")
    return composed[:closing] + group + composed[closing:]
