"""HTTP tests for the recommendation and browsing-history routers."""
import asyncio
from datetime import datetime, timedelta

import httpx
import pytest
import pytest_asyncio

from storefront.core.config import RecommendationConfig
from storefront.core.deps import build_recommendation_service, get_behavior_log, get_recommendation_service
from storefront.main import app


@pytest_asyncio.fixture
async def client(seeded):
    service = build_recommendation_service(seeded, RecommendationConfig())
    app.dependency_overrides[get_recommendation_service] = lambda: service
    app.dependency_overrides[get_behavior_log] = lambda: service.behavior_log

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_product_recommendations_envelope(client):
    response = await client.get("/api/recommendations/product/P1", params={"limit": 3})
    assert response.status_code == 200

    body = response.json()
    assert body["success"] is True
    data = body["data"]
    assert data["meta"]["count"] == len(data["recommendations"]) <= 3
    assert data["meta"]["userId"] == "anonymous"
    assert data["meta"]["algorithm"] == "generic"

    first = data["recommendations"][0]
    assert set(first) == {"product", "score", "reasons", "reasonLabels"}
    assert len(first["reasons"]) == len(first["reasonLabels"])
    assert first["product"]["id"] != "P1"


@pytest.mark.asyncio
async def test_product_recommendations_reads_user_header(client):
    response = await client.get("/api/recommendations/product/P1", headers={"X-User-Id": "u1"})
    meta = response.json()["data"]["meta"]
    assert meta["userId"] == "u1"
    assert meta["algorithm"] == "personalized"


@pytest.mark.asyncio
async def test_unknown_product_is_404(client):
    response = await client.get("/api/recommendations/product/nope")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_track_view_creates_then_merges(client):
    payload = {"productId": "S1", "sessionId": "s1", "userId": "u1", "metadata": {"timeSpent": 12, "campaign": "x"}}
    first = await client.post("/api/recommendations/track-view", json=payload, headers={"User-Agent": "pytest"})
    assert first.status_code == 201
    event = first.json()["data"]
    assert event["userId"] == "u1"
    assert event["timeSpent"] == 12
    assert event["deviceInfo"] == "pytest"
    assert event["metadata"]["campaign"] == "x"
    assert event["metadata"]["platform"] == "web"

    payload["metadata"] = {"timeSpent": 3, "scrollDepth": 250}
    second = await client.post("/api/recommendations/track-view", json=payload)
    merged = second.json()["data"]
    assert merged["id"] == event["id"]
    assert merged["timeSpent"] == 12
    assert merged["scrollDepth"] == 100


@pytest.mark.asyncio
async def test_track_view_validation_and_unknown_product(client):
    missing = await client.post("/api/recommendations/track-view", json={"productId": "S1"})
    assert missing.status_code == 422

    unknown = await client.post("/api/recommendations/track-view", json={"productId": "nope", "sessionId": "s1"})
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_user_history_requires_subject(client):
    response = await client.get("/api/recommendations/user-history")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_user_history_paginates(client):
    for product_id in ["S1", "S2", "S3"]:
        await client.post("/api/browsing-history/track", json={"productId": product_id, "sessionId": "s1", "userId": "u1"})

    response = await client.get("/api/recommendations/user-history", params={"userId": "u1", "limit": 2})
    data = response.json()["data"]
    assert len(data["history"]) == 2
    assert data["pagination"] == {
        "total": 3, "page": 1, "limit": 2, "totalPages": 2, "hasNext": True, "hasPrev": False,
    }
    assert data["history"][0]["product"]["name"]


@pytest.mark.asyncio
async def test_clear_cache(client):
    await client.get("/api/recommendations/product/P1")
    response = await client.delete("/api/recommendations/clear-cache/P1")
    assert response.json()["data"] == {"deletedCount": 1, "productId": "P1", "userId": "anonymous"}


@pytest.mark.asyncio
async def test_browsing_history_track_and_session(client):
    response = await client.post(
        "/api/browsing-history/track",
        json={"productId": "S1", "sessionId": "sess-9", "addedToBag": True, "source": "search"},
    )
    assert response.status_code == 201
    event = response.json()["data"]
    assert event["userId"] is None
    assert event["source"] == "search"
    assert event["engagementScore"] == 15

    session = await client.get("/api/browsing-history/session/sess-9")
    assert [e["id"] for e in session.json()["data"]] == [event["id"]]


@pytest.mark.asyncio
async def test_browsing_history_user_access_check(client):
    response = await client.get("/api/browsing-history/user/u1", headers={"X-User-Id": "u2"})
    assert response.status_code == 403

    own = await client.get("/api/browsing-history/user/u1", headers={"X-User-Id": "u1"})
    assert own.status_code == 200
    assert own.json()["data"]["pagination"]["total"] == 0


@pytest.mark.asyncio
async def test_popular_products_and_analytics(client):
    for user in ["u1", "u2"]:
        await client.post(
            "/api/browsing-history/track",
            json={"productId": "B1", "sessionId": f"s-{user}", "userId": user, "addedToWishlist": True},
        )

    popular = (await client.get("/api/browsing-history/popular-products")).json()["data"]
    assert popular[0]["productId"] == "B1"
    # 2 views + 2*2 users + 3*2 wishlist adds
    assert popular[0]["popularityScore"] == 12
    assert popular[0]["product"]["name"] == "Tote"

    analytics = (await client.get("/api/browsing-history/product/B1/analytics", params={"days": 7})).json()["data"]
    assert analytics["analytics"]["totalViews"] == 2
    assert analytics["analytics"]["wishlistRate"] == 100
    assert analytics["period"]["days"] == 7
    assert len(analytics["dailyTrends"]) == 1


@pytest.mark.asyncio
async def test_update_engagement_and_clear(client):
    created = await client.post(
        "/api/browsing-history/track", json={"productId": "S2", "sessionId": "s1", "userId": "u1", "timeSpent": 30}
    )
    history_id = created.json()["data"]["id"]

    forbidden = await client.put(
        f"/api/browsing-history/{history_id}/update-engagement", json={"timeSpent": 5}, headers={"X-User-Id": "u9"}
    )
    assert forbidden.status_code == 403

    updated = await client.put(
        f"/api/browsing-history/{history_id}/update-engagement",
        json={"timeSpent": 90, "addedToBag": True, "userId": "u1"},
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["timeSpent"] == 90
    assert updated.json()["data"]["addedToBag"] is True

    missing = await client.put("/api/browsing-history/nope/update-engagement", json={})
    assert missing.status_code == 404

    cleared = await client.delete("/api/browsing-history/user/u1/clear")
    assert cleared.json()["data"]["deletedCount"] == 1


@pytest.mark.asyncio
async def test_browsing_history_user_route_lists_own_history(client):
    for product_id in ["S1", "S2"]:
        await client.post("/api/browsing-history/track", json={"productId": product_id, "sessionId": "s1", "userId": "u1"})
    await client.post("/api/browsing-history/track", json={"productId": "S3", "sessionId": "s2", "userId": "u2"})

    by_header = await client.get("/api/browsing-history/user/u1", headers={"X-User-Id": "u1"}, params={"limit": 1})
    assert by_header.status_code == 200
    data = by_header.json()["data"]
    assert len(data["history"]) == 1
    assert data["pagination"]["total"] == 2
    assert data["pagination"]["hasNext"] is True

    by_query = await client.get("/api/browsing-history/user/u1", params={"userId": "u1"})
    assert {e["productId"] for e in by_query.json()["data"]["history"]} == {"S1", "S2"}

    mismatched = await client.get("/api/browsing-history/user/u1", params={"userId": "u2"})
    assert mismatched.status_code == 403


@pytest.mark.asyncio
async def test_clear_user_history_checks_owner(client):
    await client.post("/api/browsing-history/track", json={"productId": "S1", "sessionId": "s1", "userId": "u1"})

    forbidden = await client.delete("/api/browsing-history/user/u1/clear", headers={"X-User-Id": "u2"})
    assert forbidden.status_code == 403

    # nothing is older than 30 days yet
    kept = await client.delete("/api/browsing-history/user/u1/clear", params={"userId": "u1", "olderThanDays": 30})
    assert kept.json()["data"]["deletedCount"] == 0

    cleared = await client.delete("/api/browsing-history/user/u1/clear", headers={"X-User-Id": "u1"})
    assert cleared.status_code == 200
    assert cleared.json()["data"]["deletedCount"] == 1
    assert cleared.json()["data"]["userId"] == "u1"

    after = await client.get("/api/browsing-history/user/u1", headers={"X-User-Id": "u1"})
    assert after.json()["data"]["pagination"]["total"] == 0


@pytest.mark.asyncio
async def test_concurrent_track_requests_create_one_entry(client):
    payload = {"productId": "S1", "sessionId": "s1", "userId": "u1"}
    responses = await asyncio.gather(*[client.post("/api/browsing-history/track", json=payload) for _ in range(4)])

    assert {r.status_code for r in responses} == {201}
    assert len({r.json()["data"]["id"] for r in responses}) == 1
    session = await client.get("/api/browsing-history/session/s1")
    assert len(session.json()["data"]) == 1
