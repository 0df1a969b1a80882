"""Scan count and first-scan-date tests."""

import datetime
import uuid

import pytest
from httpx import AsyncClient

from qrlinks.analytics import ScanAnalytics
from qrlinks.classifier import Classification, ScanContext
from qrlinks.dependencies import RequestContext, ServiceManager
from qrlinks.recorder import ScanRecord
from qrlinks.registry import LinkRegistry


async def _record(services: ServiceManager, link, target, when: datetime.datetime, prefetch: bool = False) -> None:
    context = ScanContext(ip="198.51.100.1", classification=Classification(is_prefetch=prefetch))
    assert services.scan_recorder.submit(ScanRecord(link.id, target.id, context, occurred_at=when))
    await services.scan_recorder.flush()


@pytest.mark.asyncio
async def test_scan_counts_api(client: AsyncClient, services: ServiceManager) -> None:
    first = (await client.post("/api/links", json={"name": "A", "url": "https://example.com/a"})).json()["slug"]
    second = (await client.post("/api/links", json={"name": "B", "url": "https://example.com/b"})).json()["slug"]

    for _ in range(3):
        await client.get(f"/r/{first}", follow_redirects=False)
    await client.get(f"/r/{first}", headers={"User-Agent": "Slackbot-LinkExpanding 1.0"}, follow_redirects=False)

    await services.scan_recorder.flush()
    counts = (await client.get("/api/scans/counts")).json()
    assert counts == {first: 3, second: 0}


@pytest.mark.asyncio
async def test_scan_counts_exclude_archived_and_foreign_links(
    context: RequestContext, services: ServiceManager, owner_id: uuid.UUID
) -> None:
    registry = LinkRegistry.from_context(context)
    active, active_target = await registry.create_link(owner_id, "Active", None, "https://example.com/a")
    archived, archived_target = await registry.create_link(owner_id, "Old", None, "https://example.com/b")
    foreign, foreign_target = await registry.create_link(uuid.uuid4(), "Theirs", None, "https://example.com/c")

    now = datetime.datetime.now(datetime.timezone.utc)
    await _record(services, active, active_target, now)
    await _record(services, archived, archived_target, now)
    await _record(services, foreign, foreign_target, now)
    await registry.archive(owner_id, archived.slug)

    counts = await ScanAnalytics.from_context(context).scan_counts(owner_id)
    assert counts == {active.slug: 1}


@pytest.mark.asyncio
async def test_first_scan_date(context: RequestContext, services: ServiceManager, owner_id: uuid.UUID) -> None:
    analytics = ScanAnalytics.from_context(context)
    assert await analytics.first_scan_date(owner_id) is None

    link, target = await LinkRegistry.from_context(context).create_link(owner_id, "Menu", None, "https://example.com")
    earliest = datetime.datetime(2026, 3, 1, 9, 30, tzinfo=datetime.timezone.utc)
    await _record(services, link, target, earliest - datetime.timedelta(days=2), prefetch=True)
    await _record(services, link, target, earliest + datetime.timedelta(hours=5))
    await _record(services, link, target, earliest)

    first = await analytics.first_scan_date(owner_id)
    assert first is not None
    assert first.replace(tzinfo=None) == earliest.replace(tzinfo=None)


@pytest.mark.asyncio
async def test_first_scan_date_api(client: AsyncClient, services: ServiceManager) -> None:
    empty = await client.get("/api/scans/first-scan-date")
    assert empty.status_code == 200
    assert empty.json() == {"first_scan_date": None}

    slug = (await client.post("/api/links", json={"name": "Menu", "url": "https://example.com"})).json()["slug"]
    await client.get(f"/r/{slug}", follow_redirects=False)
    await services.scan_recorder.flush()

    response = await client.get("/api/scans/first-scan-date")
    assert response.json()["first_scan_date"] is not None
