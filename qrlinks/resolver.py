"""Resolution Pipeline - slug to destination on every scan.

Flow Diagram — resolve()
========================
::
    ┌─────────────┐
    │ GET /r/slug │
    └──────┬──────┘
           ▼
    ┌─────────────┐  HIT   ┌─────────────┐
    │ Redis cache │ ─────▶ │ ResolvedLink│
    └──────┬──────┘        └──────┬──────┘
      MISS │                      │
           ▼                      │
    ┌─────────────┐               │
    │ Joined read │  none → NotFoundError (404)
    │ link+target │               │
    └──────┬──────┘               │
           ▼                      │
    ┌─────────────┐               │
    │ cache.store │               │
    └──────┬──────┘               │
           ▼◀─────────────────────┘
    ┌─────────────┐
    │ Classify    │  prefetch flag, device, geo (never raises)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Submit scan │  non-blocking enqueue, see ``qrlinks.recorder``
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ merge UTM   │
    │ → 302 URL   │
    └─────────────┘

Key Behaviours
===============
- The redirect never waits on the scan write and never fails because of it.
- Classification errors are logged and replaced by an empty classification.
- Prefetch hits are recorded with ``is_prefetch`` set unless
  ``RECORD_PREFETCH_SCANS`` is off, in which case they are skipped.
- Every hit resolves against whatever target is current at read time.
"""

import ipaddress
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import Request
from prometheus_client import Counter, Histogram

from qrlinks.classifier import ScanContext
from qrlinks.enums import CacheStatus, RequestStatus
from qrlinks.exceptions import NotFoundError
from qrlinks.queries import active_resolution
from qrlinks.recorder import ScanRecord
from qrlinks.schemas import ResolvedLink
from qrlinks.urls import merge_utm

if TYPE_CHECKING:
    from qrlinks.dependencies import RequestContext

__all__ = ["Resolution", "ResolutionPipeline", "extract_client_ip"]

REDIRECT_REQUESTS_TOTAL = Counter(
    "qrlinks_redirect_requests_total",
    "Total redirect requests",
    ["status", "cached", "prefetch"],
)
REDIRECT_DURATION = Histogram(
    "qrlinks_redirect_duration_seconds",
    "Time taken to resolve a slug",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
CLASSIFICATION_FAILURES_TOTAL = Counter(
    "qrlinks_classification_failures_total",
    "Scan classifications that raised and were replaced by defaults",
)


def extract_client_ip(request: Request, trust_forwarded_for: bool = True) -> str | None:
    """Client address, preferring the first ``X-Forwarded-For`` hop when trusted."""
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return _strip_port(first)
    return request.client.host if request.client else None


def _strip_port(address: str) -> str:
    try:
        ipaddress.ip_address(address)
        return address
    except ValueError:
        pass
    if address.startswith("[") and "]" in address:
        return address[1 : address.index("]")]
    if address.count(":") == 1:
        return address.split(":", 1)[0]
    return address


@dataclass(frozen=True)
class Resolution:
    url: str
    link_id: uuid.UUID
    target_id: uuid.UUID
    is_prefetch: bool
    recorded: bool
    cached: bool


class ResolutionPipeline:
    def __init__(self, ctx: "RequestContext") -> None:
        self._db = ctx.database
        self._cache = ctx.cache
        self._classifier = ctx.classifier
        self._recorder = ctx.scan_recorder
        self._logger = ctx.logger
        self._settings = ctx.settings

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "ResolutionPipeline":
        return cls(ctx)

    async def resolve(self, slug: str, headers: Mapping[str, str], client_ip: str | None) -> Resolution:
        """Resolve ``slug`` to its current destination and record the scan.

        Args:
            slug: Path segment from ``/r/{slug}``.
            headers: Inbound request headers.
            client_ip: Best-known client address.

        Returns:
            Resolution: Destination with UTM parameters merged in.

        Raises:
            NotFoundError: unknown or archived slug.
        """
        start_time = time.perf_counter()
        try:
            resolved, cached = await self._lookup(slug)
        except NotFoundError:
            REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cached=CacheStatus.MISS, prefetch="false").inc()
            self._logger.info(f"No active link for slug {slug}")
            raise
        finally:
            REDIRECT_DURATION.observe(time.perf_counter() - start_time)

        context = self._describe(headers, client_ip)
        recorded = self._record(resolved, context)
        destination = merge_utm(resolved.url, resolved.utm)

        REDIRECT_REQUESTS_TOTAL.labels(
            status=RequestStatus.SUCCESS,
            cached=CacheStatus.HIT if cached else CacheStatus.MISS,
            prefetch=str(context.is_prefetch).lower(),
        ).inc()
        self._logger.debug(f"Resolved {slug} -> {destination}")
        return Resolution(
            url=destination,
            link_id=resolved.link_id,
            target_id=resolved.target_id,
            is_prefetch=context.is_prefetch,
            recorded=recorded,
            cached=cached,
        )

    async def _lookup(self, slug: str) -> tuple[ResolvedLink, bool]:
        cached = await self._cache.get(slug)
        if cached is not None:
            return cached, True

        # sampled before the read so a concurrent invalidation voids the store
        generation = await self._cache.generation(slug)
        row = (await self._db.execute(active_resolution(slug))).first()
        if row is None:
            raise NotFoundError()

        link_id, target_id, url, utm = row
        resolved = ResolvedLink(link_id=link_id, target_id=target_id, url=url, utm=utm or {})
        await self._cache.store(slug, resolved, generation)
        return resolved, False

    def _describe(self, headers: Mapping[str, str], client_ip: str | None) -> ScanContext:
        try:
            return self._classifier.describe(headers, client_ip)
        except Exception as exc:
            CLASSIFICATION_FAILURES_TOTAL.inc()
            self._logger.error(f"Scan classification failed: {exc}")
            return ScanContext(ip=client_ip, user_agent=headers.get("user-agent"))

    def _record(self, resolved: ResolvedLink, context: ScanContext) -> bool:
        if context.is_prefetch and not self._settings.RECORD_PREFETCH_SCANS:
            self._logger.debug(f"Skipping prefetch scan for link {resolved.link_id}")
            return False
        return self._recorder.submit(
            ScanRecord(
                link_id=resolved.link_id,
                target_id=resolved.target_id,
                context=context,
                utm=dict(resolved.utm),
            )
        )
