"""SQLAlchemy ORM models for the QR links application.

This module defines the database schema: links, their append-only target
history, and the flat scan-event log.

Data Model Layout
=================
::
    links table
    ├─ id (UUID PRIMARY KEY)
    ├─ owner_id (UUID, INDEXED)
    ├─ slug (VARCHAR(64) UNIQUE, INDEXED)
    ├─ name (VARCHAR(200) NOT NULL)
    ├─ design (JSON)
    ├─ tags (JSON list)
    ├─ archived (BOOLEAN DEFAULT FALSE)
    ├─ current_target_id (UUID → targets.id)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW())
    └─ updated_at (TIMESTAMPTZ, DEFAULT NOW(), ON UPDATE)

    targets table
    ├─ id (UUID PRIMARY KEY)
    ├─ link_id (UUID → links.id)
    ├─ version (INTEGER, UNIQUE with link_id)
    ├─ url (VARCHAR(2048) NOT NULL)
    ├─ utm (JSON)
    └─ created_at (TIMESTAMPTZ, DEFAULT NOW())

    scan_events table
    ├─ id (UUID PRIMARY KEY)
    ├─ link_id (UUID → links.id) ─┐ INDEX (link_id, occurred_at)
    ├─ occurred_at (TIMESTAMPTZ) ─┘
    ├─ target_id (UUID → targets.id)
    ├─ ip, user_agent, device_type, os, browser
    ├─ country, region, city, lat, lon
    ├─ language, referer
    ├─ utm (JSON snapshot)
    └─ is_prefetch (BOOLEAN)

Class Relationship Diagram
=========================
::
    Link 1 ──── * Target        (history, append-only)
    Link 1 ──── 1 Target        (current_target_id)
    Link 1 ──── * ScanEvent
    Target 1 ── * ScanEvent

Key Behaviours
===============
- (link_id, version) is unique, so two racing retargets cannot both insert
  the same version; the loser rolls back and retries.
- links.current_target_id references targets.id and is created with ALTER
  (use_alter) because the two tables reference each other.
- Slugs are unique across all links, archived ones included.
- Target and ScanEvent rows are never updated by the service.

Classes:
    Link:  A short link with design and lifecycle state.
    Target:  One immutable redirect destination version.
    ScanEvent:  One recorded redemption.
"""

import datetime
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from qrlinks.database import Base

__all__ = ["Link", "Target", "ScanEvent"]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Link(Base):
    __tablename__ = "links"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    slug: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    design: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    current_target_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("targets.id", use_alter=True, name="fk_links_current_target_id"),
        nullable=True,
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Link(id={self.id}, slug='{self.slug}', archived={self.archived})>"


class Target(Base):
    __tablename__ = "targets"
    __table_args__ = (UniqueConstraint("link_id", "version", name="uq_targets_link_version"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    link_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("links.id"), index=True, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    utm: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Target(link_id={self.link_id}, version={self.version}, url='{self.url}')>"


class ScanEvent(Base):
    __tablename__ = "scan_events"
    __table_args__ = (Index("ix_scan_events_link_occurred", "link_id", "occurred_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    link_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("links.id"), nullable=False)
    target_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("targets.id"), nullable=False)
    occurred_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    ip: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)
    device_type: Mapped[str | None] = mapped_column(String(50))
    os: Mapped[str | None] = mapped_column(String(50))
    browser: Mapped[str | None] = mapped_column(String(50))
    country: Mapped[str | None] = mapped_column(String(5))
    region: Mapped[str | None] = mapped_column(String(100))
    city: Mapped[str | None] = mapped_column(String(100))
    lat: Mapped[float | None] = mapped_column(Float)
    lon: Mapped[float | None] = mapped_column(Float)
    language: Mapped[str | None] = mapped_column(Text)
    referer: Mapped[str | None] = mapped_column(Text)
    utm: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    is_prefetch: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<ScanEvent(link_id={self.link_id}, target_id={self.target_id}, is_prefetch={self.is_prefetch})>"
