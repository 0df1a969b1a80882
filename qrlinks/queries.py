"""Link lookups shared by the registry, ledger, resolver and renderer."""

import uuid

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from qrlinks.exceptions import NotFoundError
from qrlinks.models import Link, Target

__all__ = ["load_owned_link", "link_with_current_target", "active_resolution"]


async def load_owned_link(
    db: AsyncSession,
    owner_id: uuid.UUID,
    slug: str,
    include_archived: bool = False,
    for_update: bool = False,
) -> Link:
    """Return the caller's link or raise ``NotFoundError``.

    Foreign, missing and (unless ``include_archived``) archived links all
    raise the same error.
    """
    stmt = select(Link).where(Link.owner_id == owner_id, Link.slug == slug)
    if not include_archived:
        stmt = stmt.where(Link.archived.is_(False))
    if for_update:
        stmt = stmt.with_for_update()

    link = (await db.execute(stmt)).scalar_one_or_none()
    if link is None:
        raise NotFoundError()
    return link


def link_with_current_target() -> Select:
    return select(Link, Target).outerjoin(Target, Target.id == Link.current_target_id)


def active_resolution(slug: str) -> Select:
    """One round trip from slug to the live target of a non-archived link."""
    return (
        select(Link.id, Target.id, Target.url, Target.utm)
        .join(Target, Target.id == Link.current_target_id)
        .where(Link.slug == slug, Link.archived.is_(False))
    )
