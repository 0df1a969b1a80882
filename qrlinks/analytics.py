"""Owner-scoped scan aggregates for the dashboard."""

import datetime
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import and_, func, select

from qrlinks.models import Link, ScanEvent

if TYPE_CHECKING:
    from qrlinks.dependencies import RequestContext

__all__ = ["ScanAnalytics"]


class ScanAnalytics:
    def __init__(self, ctx: "RequestContext") -> None:
        self._db = ctx.database
        self._logger = ctx.logger

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "ScanAnalytics":
        return cls(ctx)

    async def scan_counts(self, owner_id: uuid.UUID) -> dict[str, int]:
        """Human scan totals keyed by slug for every active link of the owner.

        Prefetch hits are excluded; links without scans report 0.
        """
        stmt = (
            select(Link.slug, func.count(ScanEvent.id))
            .outerjoin(
                ScanEvent,
                and_(ScanEvent.link_id == Link.id, ScanEvent.is_prefetch.is_(False)),
            )
            .where(Link.owner_id == owner_id, Link.archived.is_(False))
            .group_by(Link.id, Link.slug)
        )
        result = await self._db.execute(stmt)
        return {slug: int(count) for slug, count in result.all()}

    async def first_scan_date(self, owner_id: uuid.UUID) -> datetime.datetime | None:
        """Earliest human scan across all of the owner's links, archived included."""
        stmt = (
            select(func.min(ScanEvent.occurred_at))
            .join(Link, Link.id == ScanEvent.link_id)
            .where(Link.owner_id == owner_id, ScanEvent.is_prefetch.is_(False))
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()
