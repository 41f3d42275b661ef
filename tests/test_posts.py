"""
Post endpoint tests — listing, pagination, category filter, search,
retrieval with view counting, and the create/update/delete lifecycle with
ownership checks.

Each test builds the profiles, categories and posts it needs through the
API, so test order does not matter.
"""
import math

import pytest
from httpx import AsyncClient

from conftest import auth

ADMIN = auth(900, "admin")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_user(client: AsyncClient, username: str) -> int:
    resp = await client.post("/api/v1/users", json={
        "username": username,
        "email": f"{username}@example.com",
        "display_name": username.title(),
    })
    assert resp.status_code == 201
    return resp.json()["id"]


async def _create_category(client: AsyncClient, name: str = "Tech", color: str = "#00f") -> int:
    resp = await client.post("/api/v1/categories", json={"name": name, "color": color}, headers=ADMIN)
    assert resp.status_code == 201
    return resp.json()["id"]


async def _create_post(client: AsyncClient, user_id: int, category_id: int, **fields) -> dict:
    payload = {
        "title": "A Post",
        "content": "Some content",
        "category_id": category_id,
        "is_published": True,
    }
    payload.update(fields)
    resp = await client.post("/api/v1/posts", json=payload, headers=auth(user_id))
    assert resp.status_code == 201, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Infrastructure / health
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_response_timing_headers(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/posts")
    assert "x-response-time-ms" in resp.headers
    assert int(resp.headers["x-query-count"]) >= 0


# ---------------------------------------------------------------------------
# List posts
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_posts_empty(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/posts")
    assert resp.status_code == 200
    data = resp.json()
    assert data["data"] == []
    assert data["total"] == 0
    assert data["pages"] == 0
    assert data["page"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/api/v1/posts", "/api/v1/posts/search?q=x"])
async def test_list_and_search_envelope_keys(async_client: AsyncClient, path: str):
    resp = await async_client.get(path)
    assert resp.status_code == 200
    assert set(resp.json()) == {"data", "total", "page", "page_size", "pages"}


@pytest.mark.asyncio
async def test_list_posts_newest_first(async_client: AsyncClient):
    user_id = await _create_user(async_client, "orderer")
    category_id = await _create_category(async_client)
    for i in range(3):
        await _create_post(async_client, user_id, category_id, title=f"Post {i}")

    resp = await async_client.get("/api/v1/posts")
    titles = [p["title"] for p in resp.json()["data"]]
    assert titles == ["Post 2", "Post 1", "Post 0"]


@pytest.mark.asyncio
async def test_list_posts_embeds_category_and_author(async_client: AsyncClient):
    user_id = await _create_user(async_client, "embedder")
    category_id = await _create_category(async_client, "Travel", "#0f0")
    await _create_post(async_client, user_id, category_id)

    item = (await async_client.get("/api/v1/posts")).json()["data"][0]
    assert item["category"] == {"id": category_id, "name": "Travel", "color": "#0f0"}
    assert item["author"]["id"] == user_id
    assert item["author"]["username"] == "embedder"
    assert "content" not in item


@pytest.mark.asyncio
async def test_pagination_slices_and_counts(async_client: AsyncClient):
    user_id = await _create_user(async_client, "paginator")
    category_id = await _create_category(async_client)
    for i in range(5):
        await _create_post(async_client, user_id, category_id, title=f"Paged {i}")

    resp = await async_client.get("/api/v1/posts?page=1&page_size=2")
    data = resp.json()
    assert len(data["data"]) == 2
    assert data["total"] == 5
    assert data["pages"] == math.ceil(5 / 2)
    assert data["page_size"] == 2

    last = (await async_client.get("/api/v1/posts?page=3&page_size=2")).json()
    assert len(last["data"]) == 1

    seen = {p["id"] for page in (1, 2, 3)
            for p in (await async_client.get(f"/api/v1/posts?page={page}&page_size=2")).json()["data"]}
    assert len(seen) == 5


@pytest.mark.asyncio
async def test_page_beyond_last_is_empty_not_error(async_client: AsyncClient):
    user_id = await _create_user(async_client, "beyond")
    category_id = await _create_category(async_client)
    await _create_post(async_client, user_id, category_id)

    resp = await async_client.get("/api/v1/posts?page=7&page_size=10")
    assert resp.status_code == 200
    data = resp.json()
    assert data["data"] == []
    assert data["page"] == 7
    assert data["pages"] == 1
    assert data["total"] == 1


@pytest.mark.asyncio
async def test_page_below_one_defaults_to_first_page(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/posts?page=0")
    assert resp.status_code == 200
    assert resp.json()["page"] == 1


@pytest.mark.asyncio
async def test_page_size_is_capped(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/posts?page_size=5000")
    assert resp.status_code == 200
    assert resp.json()["page_size"] == 100


@pytest.mark.asyncio
async def test_page_size_must_be_positive(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/posts?page_size=0")
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_list_filters_by_category_before_paginating(async_client: AsyncClient):
    user_id = await _create_user(async_client, "filterer")
    tech = await _create_category(async_client, "Tech")
    food = await _create_category(async_client, "Food")
    for i in range(3):
        await _create_post(async_client, user_id, tech, title=f"Tech {i}")
    for i in range(4):
        await _create_post(async_client, user_id, food, title=f"Food {i}")

    resp = await async_client.get(f"/api/v1/posts?category={tech}&page_size=2")
    data = resp.json()
    assert data["total"] == 3
    assert data["pages"] == 2
    assert all(p["category_id"] == tech for p in data["data"])

    page2 = (await async_client.get(f"/api/v1/posts?category={tech}&page=2&page_size=2")).json()
    assert [p["category_id"] for p in page2["data"]] == [tech]


@pytest.mark.asyncio
async def test_drafts_hidden_from_anonymous_and_other_users(async_client: AsyncClient):
    owner = await _create_user(async_client, "drafter")
    other = await _create_user(async_client, "snoop")
    category_id = await _create_category(async_client)
    await _create_post(async_client, owner, category_id, title="Published")
    await _create_post(async_client, owner, category_id, title="Secret Draft", is_published=False)

    anon = (await async_client.get("/api/v1/posts")).json()
    assert [p["title"] for p in anon["data"]] == ["Published"]

    stranger = (await async_client.get("/api/v1/posts", headers=auth(other))).json()
    assert stranger["total"] == 1

    admin = (await async_client.get("/api/v1/posts", headers=ADMIN)).json()
    assert admin["total"] == 1

    mine = (await async_client.get("/api/v1/posts", headers=auth(owner))).json()
    assert {p["title"] for p in mine["data"]} == {"Published", "Secret Draft"}


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_search_matches_title_excerpt_and_content(async_client: AsyncClient):
    user_id = await _create_user(async_client, "searcher")
    category_id = await _create_category(async_client)
    await _create_post(async_client, user_id, category_id, title="Kubernetes Basics", content="pods")
    await _create_post(async_client, user_id, category_id, title="Other", excerpt="all about KUBERNETES")
    await _create_post(async_client, user_id, category_id, title="Third", content="deep kubernetes dive")
    await _create_post(async_client, user_id, category_id, title="Unrelated", content="gardening")

    resp = await async_client.get("/api/v1/posts/search?q=Kubernetes")
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 3
    assert "Unrelated" not in {p["title"] for p in data["data"]}


@pytest.mark.asyncio
async def test_search_is_paginated_like_list(async_client: AsyncClient):
    user_id = await _create_user(async_client, "searchpager")
    category_id = await _create_category(async_client)
    for i in range(3):
        await _create_post(async_client, user_id, category_id, title=f"Match {i}")

    data = (await async_client.get("/api/v1/posts/search?q=match&page_size=2")).json()
    assert len(data["data"]) == 2
    assert data["pages"] == 2
    assert data["page"] == 1
    assert [p["title"] for p in data["data"]] == ["Match 2", "Match 1"]


@pytest.mark.asyncio
async def test_search_no_match(async_client: AsyncClient):
    user_id = await _create_user(async_client, "nomatch")
    category_id = await _create_category(async_client)
    await _create_post(async_client, user_id, category_id)

    data = (await async_client.get("/api/v1/posts/search?q=zzzz")).json()
    assert data["data"] == []
    assert data["total"] == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["", "   "])
async def test_search_blank_query_is_invalid(async_client: AsyncClient, query: str):
    resp = await async_client.get("/api/v1/posts/search", params={"q": query})
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_query"


@pytest.mark.asyncio
async def test_search_treats_wildcards_literally(async_client: AsyncClient):
    user_id = await _create_user(async_client, "wildcard")
    category_id = await _create_category(async_client)
    await _create_post(async_client, user_id, category_id, title="Plain title")

    data = (await async_client.get("/api/v1/posts/search", params={"q": "%"})).json()
    assert data["total"] == 0


@pytest.mark.asyncio
async def test_search_excludes_other_users_drafts(async_client: AsyncClient):
    owner = await _create_user(async_client, "searchdraft")
    category_id = await _create_category(async_client)
    await _create_post(async_client, owner, category_id, title="Hidden gem", is_published=False)

    anon = (await async_client.get("/api/v1/posts/search?q=gem")).json()
    assert anon["total"] == 0
    mine = (await async_client.get("/api/v1/posts/search?q=gem", headers=auth(owner))).json()
    assert mine["total"] == 1


# ---------------------------------------------------------------------------
# Retrieval & view counting
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_post_by_slug_and_id(async_client: AsyncClient):
    user_id = await _create_user(async_client, "getter")
    category_id = await _create_category(async_client)
    post = await _create_post(async_client, user_id, category_id, title="Find Me", tags=["a", "b"])

    by_slug = await async_client.get(f"/api/v1/posts/{post['slug']}")
    assert by_slug.status_code == 200
    assert by_slug.json()["id"] == post["id"]
    assert by_slug.json()["content"] == "Some content"
    assert by_slug.json()["tags"] == ["a", "b"]

    by_id = await async_client.get(f"/api/v1/posts/{post['id']}")
    assert by_id.status_code == 200
    assert by_id.json()["slug"] == "find-me"


@pytest.mark.asyncio
async def test_get_post_prefers_slug_over_id(async_client: AsyncClient):
    user_id = await _create_user(async_client, "numeric")
    category_id = await _create_category(async_client)
    first = await _create_post(async_client, user_id, category_id, title="First")
    numeric = await _create_post(async_client, user_id, category_id, title=str(first["id"]))
    assert numeric["slug"] == str(first["id"])

    resp = await async_client.get(f"/api/v1/posts/{first['id']}")
    assert resp.json()["id"] == numeric["id"]


@pytest.mark.asyncio
async def test_view_count_increments_once_per_get(async_client: AsyncClient):
    user_id = await _create_user(async_client, "viewer")
    category_id = await _create_category(async_client)
    post = await _create_post(async_client, user_id, category_id)
    assert post["view_count"] == 0

    for expected in range(1, 6):
        resp = await async_client.get(f"/api/v1/posts/{post['id']}")
        assert resp.json()["view_count"] == expected


@pytest.mark.asyncio
async def test_get_post_not_found(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/posts/no-such-post")
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"


HUGE_ID = "99999999999999999999"


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["²", "１２", HUGE_ID, "0", "-1"])
async def test_get_post_odd_keys_are_not_found(async_client: AsyncClient, key: str):
    """Keys that are not a plain in-range id fall back to a missed slug lookup."""
    resp = await async_client.get(f"/api/v1/posts/{key}")
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"


@pytest.mark.asyncio
async def test_out_of_range_post_ids_are_not_found(async_client: AsyncClient):
    user_id = await _create_user(async_client, "rangeuser")

    resp = await async_client.put(f"/api/v1/posts/{HUGE_ID}", json={"title": "x"}, headers=ADMIN)
    assert resp.status_code == 404
    resp = await async_client.delete(f"/api/v1/posts/{HUGE_ID}", headers=ADMIN)
    assert resp.status_code == 404
    resp = await async_client.post(
        f"/api/v1/posts/{HUGE_ID}/comments", json={"content": "hi"}, headers=auth(user_id)
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_out_of_range_ids_elsewhere(async_client: AsyncClient):
    user_id = await _create_user(async_client, "rangeuser2")
    await _create_category(async_client)

    assert (await async_client.get(f"/api/v1/categories/{HUGE_ID}")).status_code == 404
    assert (await async_client.get(f"/api/v1/users/{HUGE_ID}")).status_code == 404

    listing = await async_client.get(f"/api/v1/posts?category={HUGE_ID}")
    assert listing.status_code == 200
    assert listing.json()["total"] == 0

    resp = await async_client.post("/api/v1/posts", json={
        "title": "Far away", "content": "x", "category_id": int(HUGE_ID),
    }, headers=auth(user_id))
    assert resp.status_code == 422
    assert "category_id" in resp.json()["errors"]

    resp = await async_client.get("/api/v1/posts", headers={"X-User-Id": HUGE_ID})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_get_draft_only_for_owner_or_admin(async_client: AsyncClient):
    owner = await _create_user(async_client, "draftowner")
    other = await _create_user(async_client, "draftother")
    category_id = await _create_category(async_client)
    post = await _create_post(async_client, owner, category_id, is_published=False)

    assert (await async_client.get(f"/api/v1/posts/{post['id']}")).status_code == 404
    assert (await async_client.get(f"/api/v1/posts/{post['id']}", headers=auth(other))).status_code == 404
    assert (await async_client.get(f"/api/v1/posts/{post['id']}", headers=auth(owner))).status_code == 200
    assert (await async_client.get(f"/api/v1/posts/{post['id']}", headers=ADMIN)).status_code == 200


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_post_requires_identity(async_client: AsyncClient):
    category_id = await _create_category(async_client)
    resp = await async_client.post("/api/v1/posts", json={
        "title": "Anon", "content": "x", "category_id": category_id,
    })
    assert resp.status_code == 401
    assert resp.json()["code"] == "unauthorized"


@pytest.mark.asyncio
async def test_create_post_unknown_profile_is_unauthorized(async_client: AsyncClient):
    category_id = await _create_category(async_client)
    resp = await async_client.post("/api/v1/posts", json={
        "title": "Ghost", "content": "x", "category_id": category_id,
    }, headers=auth(4242))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_create_post_bad_role_header(async_client: AsyncClient):
    resp = await async_client.post("/api/v1/posts", json={
        "title": "Role", "content": "x", "category_id": 1,
    }, headers=auth(1, "superuser"))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_create_post_sets_defaults(async_client: AsyncClient):
    user_id = await _create_user(async_client, "creator")
    category_id = await _create_category(async_client)
    post = await _create_post(
        async_client, user_id, category_id,
        title="Hello World! This is a Test.",
        tags=["python", " python ", "", "fastapi"],
        featured_image="cover.jpg",
    )
    assert post["slug"] == "hello-world-this-is-a-test"
    assert post["view_count"] == 0
    assert post["comments"] == []
    assert post["author_id"] == user_id
    assert post["created_at"] == post["updated_at"]
    assert post["tags"] == ["python", "fastapi"]
    assert post["featured_image"] == "cover.jpg"


@pytest.mark.asyncio
async def test_create_post_same_title_gets_unique_slugs(async_client: AsyncClient):
    user_id = await _create_user(async_client, "twin")
    category_id = await _create_category(async_client)
    slugs = [
        (await _create_post(async_client, user_id, category_id, title="Same Title"))["slug"]
        for _ in range(3)
    ]
    assert slugs == ["same-title", "same-title-2", "same-title-3"]


@pytest.mark.asyncio
async def test_create_post_unknown_category(async_client: AsyncClient):
    user_id = await _create_user(async_client, "nocat")
    resp = await async_client.post("/api/v1/posts", json={
        "title": "Lost", "content": "x", "category_id": 999,
    }, headers=auth(user_id))
    assert resp.status_code == 422
    assert resp.json()["errors"]["category_id"] == "Category does not exist"


@pytest.mark.asyncio
async def test_create_post_blank_title_rejected_by_core(async_client: AsyncClient):
    """Whitespace passes the schema's length check but not the service invariant."""
    user_id = await _create_user(async_client, "blank")
    category_id = await _create_category(async_client)
    resp = await async_client.post("/api/v1/posts", json={
        "title": "   ", "content": "   ", "category_id": category_id,
    }, headers=auth(user_id))
    assert resp.status_code == 422
    errors = resp.json()["errors"]
    assert set(errors) == {"title", "content"}


@pytest.mark.asyncio
async def test_create_post_oversized_fields(async_client: AsyncClient):
    user_id = await _create_user(async_client, "oversize")
    category_id = await _create_category(async_client)
    resp = await async_client.post("/api/v1/posts", json={
        "title": "t" * 101, "content": "x", "excerpt": "e" * 201, "category_id": category_id,
    }, headers=auth(user_id))
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_update_by_author(async_client: AsyncClient):
    user_id = await _create_user(async_client, "editor")
    category_id = await _create_category(async_client)
    post = await _create_post(async_client, user_id, category_id, title="Original Title")

    resp = await async_client.put(f"/api/v1/posts/{post['id']}", json={
        "title": "Updated Title",
        "content": "Updated content",
    }, headers=auth(user_id))
    assert resp.status_code == 200
    updated = resp.json()
    assert updated["title"] == "Updated Title"
    assert updated["slug"] == "updated-title"
    assert updated["content"] == "Updated content"
    assert updated["created_at"] == post["created_at"]
    assert updated["author_id"] == user_id
    assert updated["updated_at"] >= post["updated_at"]


@pytest.mark.asyncio
async def test_update_keeps_slug_when_title_unchanged(async_client: AsyncClient):
    user_id = await _create_user(async_client, "keeper")
    category_id = await _create_category(async_client)
    post = await _create_post(async_client, user_id, category_id, title="Stable")

    resp = await async_client.put(f"/api/v1/posts/{post['id']}", json={"content": "new"}, headers=auth(user_id))
    assert resp.json()["slug"] == "stable"


@pytest.mark.asyncio
async def test_update_title_to_existing_slug_is_disambiguated(async_client: AsyncClient):
    user_id = await _create_user(async_client, "collider")
    category_id = await _create_category(async_client)
    await _create_post(async_client, user_id, category_id, title="First Article")
    second = await _create_post(async_client, user_id, category_id, title="Second Article")

    resp = await async_client.put(f"/api/v1/posts/{second['id']}", json={"title": "First Article"},
                                  headers=auth(user_id))
    assert resp.status_code == 200
    assert resp.json()["slug"] == "first-article-2"


@pytest.mark.asyncio
async def test_update_by_admin(async_client: AsyncClient):
    user_id = await _create_user(async_client, "owned")
    category_id = await _create_category(async_client)
    post = await _create_post(async_client, user_id, category_id)

    resp = await async_client.put(f"/api/v1/posts/{post['id']}", json={"is_published": False}, headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["is_published"] is False
    assert resp.json()["author_id"] == user_id


@pytest.mark.asyncio
async def test_update_by_stranger_forbidden(async_client: AsyncClient):
    owner = await _create_user(async_client, "victim")
    stranger = await _create_user(async_client, "vandal")
    category_id = await _create_category(async_client)
    post = await _create_post(async_client, owner, category_id)

    resp = await async_client.put(f"/api/v1/posts/{post['id']}", json={"title": "Pwned"}, headers=auth(stranger))
    assert resp.status_code == 403
    assert resp.json()["code"] == "forbidden"

    unchanged = (await async_client.get(f"/api/v1/posts/{post['id']}")).json()
    assert unchanged["title"] == "A Post"


@pytest.mark.asyncio
async def test_update_nonexistent_post(async_client: AsyncClient):
    resp = await async_client.put("/api/v1/posts/99999", json={"title": "Ghost"}, headers=ADMIN)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_update_to_unknown_category(async_client: AsyncClient):
    user_id = await _create_user(async_client, "recat")
    category_id = await _create_category(async_client)
    post = await _create_post(async_client, user_id, category_id)

    resp = await async_client.put(f"/api/v1/posts/{post['id']}", json={"category_id": 12345},
                                  headers=auth(user_id))
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_by_author(async_client: AsyncClient):
    user_id = await _create_user(async_client, "deleter")
    category_id = await _create_category(async_client)
    post = await _create_post(async_client, user_id, category_id, title="To Delete")

    resp = await async_client.delete(f"/api/v1/posts/{post['id']}", headers=auth(user_id))
    assert resp.status_code == 204

    assert (await async_client.get(f"/api/v1/posts/{post['id']}")).status_code == 404
    assert (await async_client.get("/api/v1/posts")).json()["total"] == 0
    assert (await async_client.get("/api/v1/posts/search?q=delete")).json()["total"] == 0


@pytest.mark.asyncio
async def test_delete_by_stranger_forbidden(async_client: AsyncClient):
    owner = await _create_user(async_client, "keepme")
    stranger = await _create_user(async_client, "remover")
    category_id = await _create_category(async_client)
    post = await _create_post(async_client, owner, category_id)

    resp = await async_client.delete(f"/api/v1/posts/{post['id']}", headers=auth(stranger))
    assert resp.status_code == 403
    assert (await async_client.get(f"/api/v1/posts/{post['id']}")).status_code == 200


@pytest.mark.asyncio
async def test_delete_requires_identity(async_client: AsyncClient):
    resp = await async_client.delete("/api/v1/posts/1")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_delete_nonexistent_post(async_client: AsyncClient):
    resp = await async_client.delete("/api/v1/posts/99999", headers=ADMIN)
    assert resp.status_code == 404
