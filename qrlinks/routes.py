"""FastAPI route definitions for the QR links service.

API Endpoint Overview
=====================
::
    GET   /health                              HealthResponse (200)
    GET   /r/{slug}                            302 to current target, or 404

    GET   /links/{slug}/image?debug=1          image/svg+xml, or 404
    GET   /links/preview?fg=&bg=&ec=&...       image/svg+xml

    Owner-scoped (X-Owner-Id header, else 401):
    POST  /api/links                           LinkResponse (201), 409/422
    GET   /api/links                           list[LinkResponse]
    GET   /api/links/{slug}                    LinkResponse, or 404
    PATCH /api/links/{slug}                    LinkResponse (name/slug/tags)
    PATCH /api/links/{slug}/design             LinkResponse
    POST  /api/links/{slug}/retarget           TargetResponse (201)
    GET   /api/links/{slug}/targets            list[TargetResponse]
    POST  /api/links/{slug}/archive            204
    GET   /api/scans/counts                    {slug: count}
    GET   /api/scans/first-scan-date           FirstScanResponse

Key Behaviours
===============
- Domain errors propagate to the handlers registered in ``qrlinks.main``;
  routes do not translate them.
- Redirects are 302 with ``Cache-Control: no-store`` so every scan reaches
  the server and follows the current target.
- Missing, archived and foreign links all produce the same 404 body.
"""

import uuid

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import text

from qrlinks.analytics import ScanAnalytics
from qrlinks.config import Settings
from qrlinks.dependencies import (
    RequestContext,
    get_current_owner,
    get_link_registry,
    get_link_renderer,
    get_request_context,
    get_resolution_pipeline,
    get_scan_analytics,
    get_target_ledger,
)
from qrlinks.enums import HealthStatus
from qrlinks.ledger import TargetLedger
from qrlinks.models import Link, Target
from qrlinks.registry import LinkRegistry
from qrlinks.renderer import LinkRenderer, short_url
from qrlinks.resolver import ResolutionPipeline
from qrlinks.schemas import (
    DesignPatch,
    FirstScanResponse,
    HealthResponse,
    LinkCreate,
    LinkResponse,
    LinkUpdate,
    RetargetRequest,
    TargetResponse,
    parse_design,
)

__all__ = ["router"]

SVG_MEDIA_TYPE = "image/svg+xml"
NO_STORE = {"Cache-Control": "no-store"}

router = APIRouter()


def _link_response(link: Link, target: Target | None, settings: Settings) -> LinkResponse:
    base_url = settings.PUBLIC_BASE_URL.rstrip("/")
    return LinkResponse(
        id=link.id,
        slug=link.slug,
        name=link.name,
        short_url=short_url(base_url, link.slug),
        image_url=f"{base_url}/links/{link.slug}/image",
        design=parse_design(link.design),
        tags=list(link.tags or []),
        archived=link.archived,
        current_target=TargetResponse.model_validate(target) if target is not None else None,
        created_at=link.created_at,
        updated_at=link.updated_at,
    )


# ============================================================================
# PUBLIC
# ============================================================================


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ctx.database.execute(text("SELECT 1"))
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await ctx.cache.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    ctx.logger.debug(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.get("/r/{slug}", tags=["redirect"])
async def redirect(
    slug: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    pipeline: ResolutionPipeline = Depends(get_resolution_pipeline),
) -> RedirectResponse:
    ctx.add_tag("redirect")
    resolution = await pipeline.resolve(slug, request.headers, ctx.client_ip)
    return RedirectResponse(url=resolution.url, status_code=302, headers=NO_STORE)


@router.get("/links/preview", tags=["images"])
async def preview_image(
    fg: str | None = None,
    bg: str | None = None,
    ec: str | None = None,
    logo_url: str | None = None,
    logo_size_pct: float | None = None,
    debug: bool = False,
    renderer: LinkRenderer = Depends(get_link_renderer),
) -> Response:
    fields = {"fg": fg, "bg": bg, "ec": ec, "logo_url": logo_url, "logo_size_pct": logo_size_pct}
    design = parse_design({name: value for name, value in fields.items() if value is not None})
    svg = await renderer.render_preview(design, debug=debug)
    return Response(content=svg, media_type=SVG_MEDIA_TYPE, headers=NO_STORE)


@router.get("/links/{slug}/image", tags=["images"])
async def link_image(
    slug: str,
    debug: bool = False,
    renderer: LinkRenderer = Depends(get_link_renderer),
) -> Response:
    svg = await renderer.render_link(slug, debug=debug)
    return Response(content=svg, media_type=SVG_MEDIA_TYPE, headers=NO_STORE)


# ============================================================================
# OWNER API
# ============================================================================


@router.post("/api/links", response_model=LinkResponse, status_code=201, tags=["links"])
async def create_link(
    payload: LinkCreate,
    owner_id: uuid.UUID = Depends(get_current_owner),
    ctx: RequestContext = Depends(get_request_context),
    registry: LinkRegistry = Depends(get_link_registry),
) -> LinkResponse:
    ctx.add_tag("link_creation")
    ctx.logger.info(
        f"Link creation requested: {payload.url}",
        extra={"operation": "create_link", "custom_slug": payload.custom_slug},
    )
    link, target = await registry.create_link(
        owner_id,
        payload.name,
        payload.design,
        payload.url,
        utm=payload.utm.as_dict() if payload.utm else None,
        custom_slug=payload.custom_slug,
        tags=payload.tags,
    )
    ctx.logger.info(
        f"Link created: {link.slug}",
        extra={"operation": "create_link", "slug": link.slug, "duration_ms": ctx.get_duration()},
    )
    return _link_response(link, target, ctx.settings)


@router.get("/api/links", response_model=list[LinkResponse], tags=["links"])
async def list_links(
    owner_id: uuid.UUID = Depends(get_current_owner),
    ctx: RequestContext = Depends(get_request_context),
    registry: LinkRegistry = Depends(get_link_registry),
) -> list[LinkResponse]:
    rows = await registry.list_links(owner_id)
    return [_link_response(link, target, ctx.settings) for link, target in rows]


@router.get("/api/links/{slug}", response_model=LinkResponse, tags=["links"])
async def get_link(
    slug: str,
    owner_id: uuid.UUID = Depends(get_current_owner),
    ctx: RequestContext = Depends(get_request_context),
    registry: LinkRegistry = Depends(get_link_registry),
) -> LinkResponse:
    link, target = await registry.get_link(owner_id, slug)
    return _link_response(link, target, ctx.settings)


@router.patch("/api/links/{slug}", response_model=LinkResponse, tags=["links"])
async def update_link(
    slug: str,
    payload: LinkUpdate,
    owner_id: uuid.UUID = Depends(get_current_owner),
    ctx: RequestContext = Depends(get_request_context),
    registry: LinkRegistry = Depends(get_link_registry),
    ledger: TargetLedger = Depends(get_target_ledger),
) -> LinkResponse:
    link = await registry.update_link(owner_id, slug, payload)
    target = await ledger.current_target(link.id)
    return _link_response(link, target, ctx.settings)


@router.patch("/api/links/{slug}/design", response_model=LinkResponse, tags=["links"])
async def update_design(
    slug: str,
    payload: DesignPatch,
    owner_id: uuid.UUID = Depends(get_current_owner),
    ctx: RequestContext = Depends(get_request_context),
    registry: LinkRegistry = Depends(get_link_registry),
    ledger: TargetLedger = Depends(get_target_ledger),
) -> LinkResponse:
    link = await registry.update_design(owner_id, slug, payload)
    target = await ledger.current_target(link.id)
    return _link_response(link, target, ctx.settings)


@router.post("/api/links/{slug}/retarget", response_model=TargetResponse, status_code=201, tags=["links"])
async def retarget_link(
    slug: str,
    payload: RetargetRequest,
    owner_id: uuid.UUID = Depends(get_current_owner),
    ctx: RequestContext = Depends(get_request_context),
    ledger: TargetLedger = Depends(get_target_ledger),
) -> TargetResponse:
    ctx.add_tag("retarget")
    target = await ledger.retarget(owner_id, slug, payload.url, payload.utm.as_dict() if payload.utm else None)
    return TargetResponse.model_validate(target)


@router.get("/api/links/{slug}/targets", response_model=list[TargetResponse], tags=["links"])
async def link_targets(
    slug: str,
    owner_id: uuid.UUID = Depends(get_current_owner),
    ledger: TargetLedger = Depends(get_target_ledger),
) -> list[TargetResponse]:
    return [TargetResponse.model_validate(target) for target in await ledger.history(owner_id, slug)]


@router.post("/api/links/{slug}/archive", status_code=204, tags=["links"])
async def archive_link(
    slug: str,
    owner_id: uuid.UUID = Depends(get_current_owner),
    registry: LinkRegistry = Depends(get_link_registry),
) -> Response:
    await registry.archive(owner_id, slug)
    return Response(status_code=204)


@router.get("/api/scans/counts", response_model=dict[str, int], tags=["scans"])
async def scan_counts(
    owner_id: uuid.UUID = Depends(get_current_owner),
    analytics: ScanAnalytics = Depends(get_scan_analytics),
) -> dict[str, int]:
    return await analytics.scan_counts(owner_id)


@router.get("/api/scans/first-scan-date", response_model=FirstScanResponse, tags=["scans"])
async def first_scan_date(
    owner_id: uuid.UUID = Depends(get_current_owner),
    analytics: ScanAnalytics = Depends(get_scan_analytics),
) -> FirstScanResponse:
    return FirstScanResponse(first_scan_date=await analytics.first_scan_date(owner_id))
