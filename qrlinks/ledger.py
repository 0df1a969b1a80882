"""Target Ledger - append-only redirect history per link.

Every destination a link has ever pointed at is one immutable ``Target`` row
with a per-link version number. Retargeting appends ``max(version) + 1`` and
moves the link's ``current_target_id`` in the same transaction; earlier rows
are never edited.

Retarget Flow
=============
::
    ┌─────────────┐
    │ retarget()  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate URL│
    │ & UTM       │
    └──────┬──────┘
           ▼
    ┌─────────────┐   NotFoundError
    │ Load owned  │ ──────────────▶ 404
    │ link (lock) │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ max(version)│
    │ + 1         │
    └──────┬──────┘
           ▼
    ┌─────────────┐   IntegrityError on (link_id, version)
    │ INSERT +    │ ──────────────▶ rollback, retry (bounded)
    │ move pointer│                 → ConflictError when exhausted
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ COMMIT,     │
    │ invalidate  │
    │ cache       │
    └─────────────┘

Concurrency
===========
The link row is locked ``FOR UPDATE`` where the backend supports it, which
serializes retargets of one link. The unique constraint on
``(link_id, version)`` is the backstop everywhere else: a loser rolls back,
recomputes the version from committed rows and tries again.
"""

import time
import uuid
from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from qrlinks.enums import RequestStatus
from qrlinks.exceptions import ConflictError, NotFoundError, QRLinksError
from qrlinks.models import Link, Target
from qrlinks.queries import load_owned_link
from qrlinks.urls import clean_utm, normalize_url

if TYPE_CHECKING:
    from qrlinks.dependencies import RequestContext

__all__ = ["TargetLedger"]

RETARGET_REQUESTS_TOTAL = Counter(
    "qrlinks_retarget_requests_total",
    "Total retarget requests",
    ["status"],
)
RETARGET_VERSION_CONFLICTS_TOTAL = Counter(
    "qrlinks_retarget_version_conflicts_total",
    "Retarget attempts that lost a version race and were retried",
)
RETARGET_DURATION = Histogram(
    "qrlinks_retarget_duration_seconds",
    "Time taken to retarget a link",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)


class TargetLedger:
    def __init__(self, ctx: "RequestContext") -> None:
        self._db = ctx.database
        self._cache = ctx.cache
        self._logger = ctx.logger
        self._settings = ctx.settings

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "TargetLedger":
        return cls(ctx)

    async def append(self, link: Link, url: str, utm: dict[str, str], version: int) -> Target:
        """Insert a target row and point ``link`` at it. Does not commit.

        Raises:
            IntegrityError: at flush when ``version`` already exists for the link.
        """
        assert version >= 1, f"version must start at 1, got {version!r}"
        target = Target(id=uuid.uuid4(), link_id=link.id, version=version, url=url, utm=dict(utm))
        self._db.add(target)
        await self._db.flush()

        link.current_target_id = target.id
        await self._db.flush()
        return target

    async def retarget(
        self,
        owner_id: uuid.UUID,
        slug: str,
        new_url: str,
        utm: dict[str, str | None] | None = None,
    ) -> Target:
        """Append a new target version and make it current.

        Args:
            owner_id: Authenticated owner; foreign links are reported as missing.
            slug: Slug of an active link.
            new_url: Absolute http(s) destination.
            utm: Optional source/medium/campaign attributes for this version.

        Returns:
            Target: The new current target.

        Raises:
            ValidationError: bad URL or UTM keys.
            NotFoundError: missing, archived or foreign link.
            ConflictError: every attempt lost a version race.
        """
        start_time = time.perf_counter()
        try:
            url = normalize_url(new_url)
            attributes = clean_utm(utm)
            target = await self._retarget_with_retry(owner_id, slug, url, attributes)
        except NotFoundError:
            RETARGET_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
            raise
        except ConflictError as exc:
            RETARGET_REQUESTS_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
            self._logger.error(f"Retarget failed for {slug}: {exc}")
            raise
        except QRLinksError as exc:
            RETARGET_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            self._logger.warning(f"Retarget rejected for {slug}: {exc}")
            raise
        finally:
            RETARGET_DURATION.observe(time.perf_counter() - start_time)

        RETARGET_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        await self._cache.invalidate(slug)
        self._logger.info(f"Retargeted {slug} to version {target.version}: {target.url}")
        return target

    async def _retarget_with_retry(
        self, owner_id: uuid.UUID, slug: str, url: str, utm: dict[str, str]
    ) -> Target:
        attempts = self._settings.RETARGET_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            link = await load_owned_link(self._db, owner_id, slug, for_update=True)
            version = await self._next_version(link.id)
            try:
                target = await self.append(link, url, utm, version)
                await self._db.commit()
                return target
            except IntegrityError:
                await self._db.rollback()
                RETARGET_VERSION_CONFLICTS_TOTAL.inc()
                self._logger.warning(f"Version {version} of {slug} already taken (attempt {attempt}/{attempts})")

        raise ConflictError(f"Link '{slug}' is being retargeted concurrently, please retry")

    async def _next_version(self, link_id: uuid.UUID) -> int:
        result = await self._db.execute(
            select(func.coalesce(func.max(Target.version), 0)).where(Target.link_id == link_id)
        )
        return int(result.scalar_one()) + 1

    async def current_target(self, link_id: uuid.UUID) -> Target:
        """Follow the link's pointer in one joined read."""
        result = await self._db.execute(
            select(Target).join(Link, Link.current_target_id == Target.id).where(Link.id == link_id)
        )
        target = result.scalar_one_or_none()
        if target is None:
            raise NotFoundError()
        return target

    async def history(self, owner_id: uuid.UUID, slug: str) -> list[Target]:
        """Every version of the caller's link, oldest first. Archived links included."""
        link = await load_owned_link(self._db, owner_id, slug, include_archived=True)
        result = await self._db.execute(
            select(Target).where(Target.link_id == link.id).order_by(Target.version.asc())
        )
        return list(result.scalars().all())
