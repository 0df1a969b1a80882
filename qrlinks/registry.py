"""Link Registry - owner-scoped lifecycle of QR links.

This module owns link creation, design edits, renames and archival. Every
operation is scoped to the authenticated owner; a slug that exists but
belongs to someone else is indistinguishable from a missing one.

Creation Flow
=============
::
    ┌─────────────────┐
    │ create_link()   │
    └────────┬────────┘
             ▼
    ┌─────────────────┐
    │ Validate name,  │  ValidationError → 422
    │ URL, UTM, design│
    └────────┬────────┘
             ▼
    ┌─────────────────┐  custom slug taken → ConflictError (409)
    │ Mint slug       │  random slug: nanoid, bounded retries,
    │                 │  then one longer length
    └────────┬────────┘
             ▼
    ┌─────────────────┐
    │ INSERT link     │  one transaction:
    │ INSERT target v1│  link, first target, pointer
    │ set pointer     │
    └────────┬────────┘
             ▼
    ┌─────────────────┐
    │ COMMIT          │  unique violation → ConflictError
    └─────────────────┘

How to Use
===========
**Step 1 — Build from a request context**::
    registry = LinkRegistry.from_context(ctx)

**Step 2 — Create**::
    link, target = await registry.create_link(
        owner_id, "Menu", {"fg": "#111111"}, "https://example.com/menu"
    )

**Step 3 — Edit**::
    await registry.update_design(owner_id, link.slug, DesignPatch(logo_size_pct=30))
    await registry.archive(owner_id, link.slug)

Key Behaviours
===============
- A link and its first target are created atomically; a link never exists
  without a current target.
- Slugs are unique across all links, archived ones included, so a printed
  code can never start resolving to someone else's destination.
- Design patches merge into the stored design and re-clamp the logo size.
- Archiving is idempotent and keeps every target and scan row.
- Renames and archives invalidate the resolution cache after commit.
"""

import time
import uuid
from typing import TYPE_CHECKING, Any

from prometheus_client import Counter, Histogram
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from qrlinks.enums import RequestStatus
from qrlinks.exceptions import ConflictError, NotFoundError, QRLinksError, ValidationError
from qrlinks.ledger import TargetLedger
from qrlinks.models import Link, Target
from qrlinks.queries import link_with_current_target, load_owned_link
from qrlinks.schemas import Design, DesignPatch, LinkUpdate, clean_name, clean_tags, parse_design
from qrlinks.slugs import generate_slug, validate_slug
from qrlinks.urls import clean_utm, normalize_url

if TYPE_CHECKING:
    from qrlinks.dependencies import RequestContext

__all__ = ["LinkRegistry"]

LINK_CREATE_REQUESTS_TOTAL = Counter(
    "qrlinks_link_create_requests_total",
    "Total link creation requests",
    ["status"],
)
LINK_CREATE_DURATION = Histogram(
    "qrlinks_link_create_duration_seconds",
    "Time taken to create a link with its first target",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)
SLUG_COLLISIONS_TOTAL = Counter(
    "qrlinks_slug_collisions_total",
    "Randomly generated slugs that were already taken",
)
LINKS_ARCHIVED_TOTAL = Counter(
    "qrlinks_links_archived_total",
    "Links moved to the archived state",
)


class LinkRegistry:
    """Owner-scoped link lifecycle service.

    Holds the request's database session, cache and logger; build one per
    request with ``from_context``.
    """

    def __init__(self, ctx: "RequestContext") -> None:
        self._db = ctx.database
        self._cache = ctx.cache
        self._logger = ctx.logger
        self._settings = ctx.settings
        self._ledger = TargetLedger.from_context(ctx)

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "LinkRegistry":
        return cls(ctx)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_link(
        self,
        owner_id: uuid.UUID,
        name: str,
        design: Design | dict[str, Any] | None,
        initial_url: str,
        utm: dict[str, str | None] | None = None,
        custom_slug: str | None = None,
        tags: list[str] | None = None,
    ) -> tuple[Link, Target]:
        """Create a link together with its first target (version 1).

        Args:
            owner_id: Authenticated owner.
            name: Display name, 1-200 characters.
            design: Visual settings; missing fields take the defaults.
            initial_url: Absolute http(s) destination.
            utm: Optional source/medium/campaign attributes for version 1.
            custom_slug: Caller-chosen slug; random when omitted.
            tags: Free-form labels.

        Returns:
            tuple[Link, Target]: The committed link and its current target.

        Raises:
            ValidationError: any field is rejected.
            ConflictError: the slug is taken, or no free random slug was found.
        """
        start_time = time.perf_counter()
        slug = custom_slug
        try:
            clean = clean_name(name)
            url = normalize_url(initial_url)
            attributes = clean_utm(utm)
            parsed = parse_design(design)
            labels = clean_tags(tags)
            slug = await self._mint_slug(custom_slug)

            link = Link(
                id=uuid.uuid4(),
                owner_id=owner_id,
                slug=slug,
                name=clean,
                design=parsed.model_dump(mode="json"),
                tags=labels,
                archived=False,
                current_target_id=None,
            )
            self._db.add(link)
            await self._db.flush()

            target = await self._ledger.append(link, url, attributes, version=1)
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            LINK_CREATE_REQUESTS_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
            self._logger.warning(f"Slug '{slug}' lost a uniqueness race: {exc.orig}")
            raise ConflictError(f"Slug '{slug}' is already taken") from exc
        except ConflictError:
            LINK_CREATE_REQUESTS_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
            raise
        except QRLinksError as exc:
            LINK_CREATE_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            self._logger.warning(f"Link creation rejected: {exc}")
            raise
        except Exception as exc:
            await self._db.rollback()
            LINK_CREATE_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.error(f"Link creation failed: {exc}")
            raise
        finally:
            LINK_CREATE_DURATION.observe(time.perf_counter() - start_time)

        LINK_CREATE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(
            f"Created link {link.slug} -> {target.url}",
            extra={"link_id": str(link.id), "owner_id": str(owner_id)},
        )
        return link, target

    async def _mint_slug(self, custom_slug: str | None) -> str:
        settings = self._settings
        if custom_slug is not None and custom_slug.strip():
            slug = validate_slug(custom_slug, settings.SLUG_MIN_LENGTH, settings.SLUG_MAX_LENGTH)
            if await self._slug_taken(slug):
                raise ConflictError(f"Slug '{slug}' is already taken")
            return slug

        for length in (settings.SLUG_LENGTH, settings.SLUG_FALLBACK_LENGTH):
            for _ in range(settings.SLUG_GENERATION_ATTEMPTS):
                candidate = generate_slug(length)
                if not await self._slug_taken(candidate):
                    return candidate
                SLUG_COLLISIONS_TOTAL.inc()
            self._logger.warning(f"No free slug of length {length} after {settings.SLUG_GENERATION_ATTEMPTS} attempts")

        raise ConflictError("Could not generate a unique slug, please retry")

    async def _slug_taken(self, slug: str, exclude_id: uuid.UUID | None = None) -> bool:
        stmt = select(Link.id).where(Link.slug == slug)
        if exclude_id is not None:
            stmt = stmt.where(Link.id != exclude_id)
        return (await self._db.execute(stmt.limit(1))).scalar_one_or_none() is not None

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    async def update_design(
        self, owner_id: uuid.UUID, slug: str, patch: DesignPatch | dict[str, Any]
    ) -> Link:
        """Merge ``patch`` into the stored design of an active link."""
        if not isinstance(patch, DesignPatch):
            try:
                patch = DesignPatch.model_validate(patch or {})
            except PydanticValidationError as exc:
                raise ValidationError(str(exc.errors()[0].get("msg", "Invalid design"))) from exc

        link = await load_owned_link(self._db, owner_id, slug)
        changes = patch.model_dump(exclude_unset=True, mode="json")
        merged = parse_design({**(link.design or {}), **changes})
        link.design = merged.model_dump(mode="json")
        await self._db.commit()

        self._logger.info(f"Updated design of {slug}: {', '.join(sorted(changes)) or 'no changes'}")
        return link

    async def update_link(self, owner_id: uuid.UUID, slug: str, patch: LinkUpdate) -> Link:
        """Rename, relabel or change the slug of an active link.

        Raises:
            ValidationError: new slug is malformed.
            NotFoundError: missing, archived or foreign link.
            ConflictError: new slug is already taken.
        """
        link = await load_owned_link(self._db, owner_id, slug)
        changes = patch.model_dump(exclude_unset=True)
        old_slug = link.slug

        if changes.get("name") is not None:
            link.name = clean_name(changes["name"])
        if changes.get("tags") is not None:
            link.tags = clean_tags(changes["tags"])
        if changes.get("slug") is not None:
            new_slug = validate_slug(changes["slug"], self._settings.SLUG_MIN_LENGTH, self._settings.SLUG_MAX_LENGTH)
            if new_slug != old_slug:
                if await self._slug_taken(new_slug, exclude_id=link.id):
                    raise ConflictError(f"Slug '{new_slug}' is already taken")
                link.slug = new_slug

        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            raise ConflictError(f"Slug '{changes.get('slug')}' is already taken") from exc

        if link.slug != old_slug:
            await self._cache.invalidate(old_slug)
            self._logger.info(f"Renamed slug {old_slug} -> {link.slug}")
        return link

    async def archive(self, owner_id: uuid.UUID, slug: str) -> Link:
        """Stop resolving ``slug``. Archiving an archived link is a no-op."""
        link = await load_owned_link(self._db, owner_id, slug, include_archived=True)
        if not link.archived:
            link.archived = True
            await self._db.commit()
            LINKS_ARCHIVED_TOTAL.inc()
            self._logger.info(f"Archived link {slug}", extra={"link_id": str(link.id)})

        await self._cache.invalidate(slug)
        return link

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_link(self, owner_id: uuid.UUID, slug: str) -> tuple[Link, Target | None]:
        result = await self._db.execute(
            link_with_current_target().where(
                Link.owner_id == owner_id, Link.slug == slug, Link.archived.is_(False)
            )
        )
        row = result.first()
        if row is None:
            raise NotFoundError()
        return row[0], row[1]

    async def list_links(self, owner_id: uuid.UUID) -> list[tuple[Link, Target | None]]:
        stmt = link_with_current_target().where(Link.owner_id == owner_id, Link.archived.is_(False))
        result = await self._db.execute(stmt.order_by(Link.created_at.desc(), Link.slug))
        return [(link, target) for link, target in result.all()]
