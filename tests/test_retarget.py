"""Target ledger tests: version numbering, history and version races."""

import uuid

import pytest
from httpx import AsyncClient

from qrlinks.dependencies import RequestContext, ServiceManager
from qrlinks.exceptions import ConflictError, NotFoundError, ValidationError
from qrlinks.ledger import TargetLedger
from qrlinks.registry import LinkRegistry


async def _create_link(context: RequestContext, owner_id: uuid.UUID, slug: str = "menu-link") -> str:
    link, _ = await LinkRegistry.from_context(context).create_link(
        owner_id, "Menu", None, "https://example.com/v1", custom_slug=slug
    )
    return link.slug


@pytest.mark.asyncio
async def test_retarget_appends_versions(client: AsyncClient) -> None:
    created = (await client.post("/api/links", json={"name": "Menu", "url": "https://example.com/v1"})).json()
    slug = created["slug"]

    second = await client.post(f"/api/links/{slug}/retarget", json={"url": "https://example.com/v2"})
    third = await client.post(
        f"/api/links/{slug}/retarget",
        json={"url": "https://example.com/v3", "utm": {"source": "poster"}},
    )
    assert second.status_code == 201
    assert third.status_code == 201
    assert second.json()["version"] == 2
    assert third.json()["version"] == 3
    assert third.json()["utm"] == {"source": "poster"}

    history = (await client.get(f"/api/links/{slug}/targets")).json()
    assert [target["version"] for target in history] == [1, 2, 3]
    assert [target["url"] for target in history] == [
        "https://example.com/v1",
        "https://example.com/v2",
        "https://example.com/v3",
    ]

    current = (await client.get(f"/api/links/{slug}")).json()["current_target"]
    assert current["version"] == 3
    assert current["id"] == third.json()["id"]


@pytest.mark.asyncio
async def test_retarget_validation(client: AsyncClient) -> None:
    slug = (await client.post("/api/links", json={"name": "Menu", "url": "https://example.com"})).json()["slug"]

    bad_url = await client.post(f"/api/links/{slug}/retarget", json={"url": "mailto:someone@example.com"})
    assert bad_url.status_code == 422

    bad_utm = await client.post(
        f"/api/links/{slug}/retarget",
        json={"url": "https://example.com/v2", "utm": {"term": "shoes"}},
    )
    assert bad_utm.status_code == 422

    history = (await client.get(f"/api/links/{slug}/targets")).json()
    assert len(history) == 1


@pytest.mark.asyncio
async def test_retarget_archived_link_is_not_found(client: AsyncClient) -> None:
    slug = (await client.post("/api/links", json={"name": "Menu", "url": "https://example.com"})).json()["slug"]
    await client.post(f"/api/links/{slug}/archive")

    response = await client.post(f"/api/links/{slug}/retarget", json={"url": "https://example.com/v2"})
    assert response.status_code == 404

    # history stays readable for the owner
    history = await client.get(f"/api/links/{slug}/targets")
    assert history.status_code == 200
    assert len(history.json()) == 1


@pytest.mark.asyncio
async def test_retarget_retries_after_stale_version(context: RequestContext, owner_id: uuid.UUID) -> None:
    slug = await _create_link(context, owner_id)

    class StaleLedger(TargetLedger):
        calls = 0

        async def _next_version(self, link_id: uuid.UUID) -> int:
            self.calls += 1
            if self.calls == 1:
                return 1
            return await super()._next_version(link_id)

    ledger = StaleLedger(context)
    target = await ledger.retarget(owner_id, slug, "https://example.com/v2")

    assert target.version == 2
    assert ledger.calls == 2
    history = await ledger.history(owner_id, slug)
    assert [t.version for t in history] == [1, 2]


@pytest.mark.asyncio
async def test_retarget_gives_up_after_max_attempts(context: RequestContext, owner_id: uuid.UUID) -> None:
    slug = await _create_link(context, owner_id)

    class AlwaysStaleLedger(TargetLedger):
        calls = 0

        async def _next_version(self, link_id: uuid.UUID) -> int:
            self.calls += 1
            return 1

    ledger = AlwaysStaleLedger(context)
    with pytest.raises(ConflictError):
        await ledger.retarget(owner_id, slug, "https://example.com/v2")

    assert ledger.calls == context.settings.RETARGET_MAX_ATTEMPTS
    history = await TargetLedger(context).history(owner_id, slug)
    assert [t.url for t in history] == ["https://example.com/v1"]


@pytest.mark.asyncio
async def test_interleaved_retargets_get_distinct_versions(
    context: RequestContext, services: ServiceManager, owner_id: uuid.UUID
) -> None:
    slug = await _create_link(context, owner_id)

    async with services.session_factory() as racer_session, services.session_factory() as rival_session:
        rival = TargetLedger(RequestContext(database=rival_session, service_manager=services))

        class RacingLedger(TargetLedger):
            raced = False

            async def _next_version(self, link_id: uuid.UUID) -> int:
                version = await super()._next_version(link_id)
                if not self.raced:
                    self.raced = True
                    # the rival commits the same version first
                    await rival.retarget(owner_id, slug, "https://example.com/rival")
                return version

        racer = RacingLedger(RequestContext(database=racer_session, service_manager=services))
        target = await racer.retarget(owner_id, slug, "https://example.com/racer")

    assert target.version == 3
    history = await TargetLedger(context).history(owner_id, slug)
    assert [(t.version, t.url) for t in history] == [
        (1, "https://example.com/v1"),
        (2, "https://example.com/rival"),
        (3, "https://example.com/racer"),
    ]
    current = await TargetLedger(context).current_target(history[0].link_id)
    assert current.version == 3


@pytest.mark.asyncio
async def test_retarget_service_errors(context: RequestContext, owner_id: uuid.UUID) -> None:
    slug = await _create_link(context, owner_id)
    ledger = TargetLedger.from_context(context)

    with pytest.raises(ValidationError):
        await ledger.retarget(owner_id, slug, "ftp://example.com/file")
    with pytest.raises(NotFoundError):
        await ledger.retarget(uuid.uuid4(), slug, "https://example.com/v2")
    with pytest.raises(NotFoundError):
        await ledger.current_target(uuid.uuid4())
