"""Owner link API behavior tests."""

import uuid

import pytest
from httpx import AsyncClient

PUBLIC_BASE_URL = "http://qr.test"


async def _create(client: AsyncClient, **overrides) -> dict:
    body = {"name": "Menu", "url": "https://example.com/menu"}
    body.update(overrides)
    response = await client.post("/api/links", json=body)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_link_defaults(client: AsyncClient) -> None:
    data = await _create(client)
    assert len(data["slug"]) == 7
    assert data["name"] == "Menu"
    assert data["archived"] is False
    assert data["short_url"] == f"{PUBLIC_BASE_URL}/r/{data['slug']}"
    assert data["image_url"] == f"{PUBLIC_BASE_URL}/links/{data['slug']}/image"
    assert data["design"] == {
        "fg": "#0b3d91",
        "bg": "#ffffff",
        "ec": "M",
        "format": "svg",
        "logo_url": None,
        "logo_size_pct": 22.0,
    }
    assert data["current_target"]["version"] == 1
    assert data["current_target"]["url"] == "https://example.com/menu"
    assert data["current_target"]["utm"] == {}


@pytest.mark.asyncio
async def test_create_link_with_utm_and_tags(client: AsyncClient) -> None:
    data = await _create(
        client,
        utm={"source": "newsletter", "medium": " ", "campaign": "spring"},
        tags=["print", "print", " flyer "],
    )
    assert data["current_target"]["utm"] == {"source": "newsletter", "campaign": "spring"}
    assert data["tags"] == ["print", "flyer"]


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["not-a-url", "ftp://example.com/file", "javascript:alert(1)", "/relative/path", ""])
async def test_create_link_rejects_bad_urls(client: AsyncClient, url: str) -> None:
    response = await client.post("/api/links", json={"name": "Menu", "url": url})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_link_rejects_blank_name(client: AsyncClient) -> None:
    response = await client.post("/api/links", json={"name": "   ", "url": "https://example.com"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_link_rejects_unknown_fields(client: AsyncClient) -> None:
    response = await client.post(
        "/api/links",
        json={"name": "Menu", "url": "https://example.com", "owner_id": str(uuid.uuid4())},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_custom_slug(client: AsyncClient) -> None:
    data = await _create(client, custom_slug="spring-menu")
    assert data["slug"] == "spring-menu"


@pytest.mark.asyncio
async def test_custom_slug_collision_is_conflict(client: AsyncClient) -> None:
    await _create(client, custom_slug="taken1")
    response = await client.post(
        "/api/links",
        json={"name": "Other", "url": "https://example.org", "custom_slug": "taken1"},
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_custom_slug_collision_with_other_owner(client: AsyncClient) -> None:
    await _create(client, custom_slug="shared-slug")
    response = await client.post(
        "/api/links",
        json={"name": "Other", "url": "https://example.org", "custom_slug": "shared-slug"},
        headers={"X-Owner-Id": str(uuid.uuid4())},
    )
    assert response.status_code == 409


@pytest.mark.asyncio
@pytest.mark.parametrize("slug", ["ab", "-leading", "trailing-", "has space", "bad!", "a" * 65])
async def test_custom_slug_format(client: AsyncClient, slug: str) -> None:
    response = await client.post(
        "/api/links",
        json={"name": "Menu", "url": "https://example.com", "custom_slug": slug},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_logo_size_is_clamped(client: AsyncClient) -> None:
    large = await _create(client, design={"logo_size_pct": 80})
    small = await _create(client, design={"logo_size_pct": 2})
    assert large["design"]["logo_size_pct"] == 40.0
    assert small["design"]["logo_size_pct"] == 10.0


@pytest.mark.asyncio
async def test_design_rejects_bad_color(client: AsyncClient) -> None:
    response = await client.post(
        "/api/links",
        json={"name": "Menu", "url": "https://example.com", "design": {"fg": "red"}},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_partial_design_update_keeps_other_fields(client: AsyncClient) -> None:
    created = await _create(
        client,
        design={"fg": "#111111", "ec": "H", "logo_url": "/uploads/logo.png"},
    )
    slug = created["slug"]

    response = await client.patch(f"/api/links/{slug}/design", json={"logo_size_pct": 30})
    assert response.status_code == 200
    design = response.json()["design"]
    assert design["logo_size_pct"] == 30.0
    assert design["fg"] == "#111111"
    assert design["ec"] == "H"
    assert design["logo_url"] == "/uploads/logo.png"


@pytest.mark.asyncio
async def test_design_update_clamps_and_rejects_unknown_fields(client: AsyncClient) -> None:
    slug = (await _create(client))["slug"]

    clamped = await client.patch(f"/api/links/{slug}/design", json={"logo_size_pct": 95})
    assert clamped.json()["design"]["logo_size_pct"] == 40.0

    unknown = await client.patch(f"/api/links/{slug}/design", json={"shape": "dots"})
    assert unknown.status_code == 422


@pytest.mark.asyncio
async def test_design_update_on_missing_link(client: AsyncClient) -> None:
    response = await client.patch("/api/links/missing-link/design", json={"fg": "#000000"})
    assert response.status_code == 404
    assert response.json() == {"detail": "Link not found"}


@pytest.mark.asyncio
async def test_rename_and_retag(client: AsyncClient) -> None:
    slug = (await _create(client))["slug"]

    response = await client.patch(
        f"/api/links/{slug}",
        json={"name": "Dinner menu", "slug": "dinner-menu", "tags": ["evening"]},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["slug"] == "dinner-menu"
    assert data["name"] == "Dinner menu"
    assert data["tags"] == ["evening"]
    assert data["current_target"]["version"] == 1

    assert (await client.get(f"/api/links/{slug}")).status_code == 404
    assert (await client.get("/api/links/dinner-menu")).status_code == 200


@pytest.mark.asyncio
async def test_rename_to_taken_slug_is_conflict(client: AsyncClient) -> None:
    await _create(client, custom_slug="first-link")
    second = await _create(client, custom_slug="second-link")

    response = await client.patch(f"/api/links/{second['slug']}", json={"slug": "first-link"})
    assert response.status_code == 409

    unchanged = await client.patch(f"/api/links/{second['slug']}", json={"slug": "second-link"})
    assert unchanged.status_code == 200


@pytest.mark.asyncio
async def test_archive_is_idempotent_and_hides_link(client: AsyncClient) -> None:
    slug = (await _create(client))["slug"]

    assert (await client.post(f"/api/links/{slug}/archive")).status_code == 204
    assert (await client.post(f"/api/links/{slug}/archive")).status_code == 204

    assert (await client.get(f"/api/links/{slug}")).status_code == 404
    listed = (await client.get("/api/links")).json()
    assert slug not in [link["slug"] for link in listed]


@pytest.mark.asyncio
async def test_archived_slug_cannot_be_reused(client: AsyncClient) -> None:
    await _create(client, custom_slug="retired")
    await client.post("/api/links/retired/archive")

    response = await client.post(
        "/api/links",
        json={"name": "Again", "url": "https://example.com", "custom_slug": "retired"},
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_list_links_is_owner_scoped(client: AsyncClient) -> None:
    mine = await _create(client)
    other = await client.post(
        "/api/links",
        json={"name": "Theirs", "url": "https://example.org"},
        headers={"X-Owner-Id": str(uuid.uuid4())},
    )
    assert other.status_code == 201

    listed = (await client.get("/api/links")).json()
    assert [link["slug"] for link in listed] == [mine["slug"]]


@pytest.mark.asyncio
async def test_foreign_link_looks_missing(client: AsyncClient) -> None:
    slug = (await _create(client))["slug"]
    stranger = {"X-Owner-Id": str(uuid.uuid4())}

    for response in (
        await client.get(f"/api/links/{slug}", headers=stranger),
        await client.post(f"/api/links/{slug}/archive", headers=stranger),
        await client.post(f"/api/links/{slug}/retarget", json={"url": "https://evil.example"}, headers=stranger),
    ):
        assert response.status_code == 404
        assert response.json() == {"detail": "Link not found"}


@pytest.mark.asyncio
async def test_owner_header_is_required(anonymous_client: AsyncClient) -> None:
    missing = await anonymous_client.get("/api/links")
    assert missing.status_code == 401

    malformed = await anonymous_client.get("/api/links", headers={"X-Owner-Id": "not-a-uuid"})
    assert malformed.status_code == 401

    create = await anonymous_client.post("/api/links", json={"name": "Menu", "url": "https://example.com"})
    assert create.status_code == 401
