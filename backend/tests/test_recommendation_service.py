"""Tests for the recommendation facade: caching, dispatch, fusion and fallback."""
from datetime import timedelta

import pytest

from storefront.core.config import RecommendationConfig
from storefront.services.cache import InMemoryCacheStore, RecommendationCache
from storefront.services.domain import Candidate, Reason
from storefront.services.recommendation_service import ProductNotFoundError, RecommendationService
from storefront.services.signals import Signal
from conftest import make_product


class StubSignal(Signal):
    """Returns fixed candidates (or raises) and counts invocations."""

    def __init__(self, name, candidates=None, error=None):
        super().__init__(RecommendationConfig())
        self.name = name
        self.candidates = candidates or []
        self.error = error
        self.calls = 0

    async def generate(self, ctx):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.candidates)


def build_service(catalog, behavior_log, affinity_store, clock, config=None):
    config = config or RecommendationConfig()
    cache = RecommendationCache(InMemoryCacheStore(), catalog, ttl=config.cache_ttl)
    return RecommendationService(catalog, behavior_log, affinity_store, cache, config, clock=clock)


@pytest.fixture
def shoe_catalog(catalog):
    products = [
        make_product("P1", category="shoes", price=2000, rating=4.0, rating_count=10),
        make_product("S1", category="shoes", price=1800, rating=4.8, rating_count=5),
        make_product("S2", category="shoes", price=2200, rating=4.8, rating_count=50),
        make_product("S3", category="shoes", price=5000, rating=3.0, rating_count=100),
        make_product("S4", category="shoes", price=1500, rating=None),
        make_product("B1", category="bags", price=1900, rating=5.0, rating_count=500),
    ]
    catalog.products.update({p.id: p for p in products})
    return catalog


@pytest.fixture
def service(shoe_catalog, behavior_log, affinity_store, clock):
    return build_service(shoe_catalog, behavior_log, affinity_store, clock)


@pytest.mark.asyncio
async def test_unknown_product_raises_not_found(service):
    with pytest.raises(ProductNotFoundError):
        await service.generate_recommendations("missing", None, 6)


@pytest.mark.asyncio
async def test_anonymous_request_never_touches_history_or_wishlist(service, behavior_log, affinity_store):
    recs = await service.generate_recommendations("P1", None, 6)

    assert recs
    assert behavior_log.calls["subject_history"] == 0
    assert behavior_log.calls["recent_viewers"] == 0
    assert affinity_store.calls["list_for"] == 0
    assert all(r.product.id != "P1" for r in recs)


@pytest.mark.asyncio
async def test_generic_path_blends_content_and_popularity(service):
    recs = await service.generate_recommendations("P1", None, 6)
    by_id = {r.product.id: r for r in recs}

    # bag is not content-similar but is the most popular product
    assert by_id["B1"].reasons == [Reason.POPULARITY]
    assert by_id["B1"].total_score == pytest.approx(0.5 * 0.4)
    assert Reason.CONTENT_SIMILARITY in by_id["S2"].reasons
    assert Reason.POPULARITY in by_id["S2"].reasons


@pytest.mark.asyncio
async def test_weights_sum_to_one_for_personalized_request(service):
    shared = make_product("X")
    candidates = [Candidate(shared, 1.0, Reason.COLLABORATIVE_FILTERING)]
    service.collaborative = StubSignal("collaborative", candidates)
    service.content = StubSignal("content", candidates)
    service.history = StubSignal("history", candidates)
    service.wishlist = StubSignal("wishlist", candidates)

    recs = await service.generate_recommendations("P1", "u1", 6)

    assert len(recs) == 1
    assert recs[0].total_score == pytest.approx(1.0)
    assert len(recs[0].reasons) == 4


@pytest.mark.asyncio
async def test_duplicates_from_two_signals_are_merged(service):
    shared = make_product("X")
    service.collaborative = StubSignal("collaborative", [Candidate(shared, 0.5, Reason.COLLABORATIVE_FILTERING)])
    service.content = StubSignal("content", [Candidate(shared, 0.9, Reason.CONTENT_SIMILARITY)])
    service.history = StubSignal("history")
    service.wishlist = StubSignal("wishlist")

    recs = await service.generate_recommendations("P1", "u1", 6)

    assert [r.product.id for r in recs] == ["X"]
    assert recs[0].reasons == [Reason.COLLABORATIVE_FILTERING, Reason.CONTENT_SIMILARITY]
    assert recs[0].total_score == pytest.approx(0.5 * 0.4 + 0.9 * 0.3)


@pytest.mark.asyncio
async def test_cache_hit_skips_signal_dispatch(service):
    first = await service.generate_recommendations("P1", None, 3)
    stub = StubSignal("content", error=AssertionError("should not run"))
    service.content = stub
    service.popularity = StubSignal("popularity", error=AssertionError("should not run"))

    second = await service.generate_recommendations("P1", None, 3)

    assert stub.calls == 0
    assert [(r.product.id, r.total_score, r.reasons) for r in second] == [
        (r.product.id, r.total_score, r.reasons) for r in first
    ]


@pytest.mark.asyncio
async def test_short_cache_entry_is_recomputed(service):
    await service.generate_recommendations("P1", None, 1)
    stub = StubSignal("popularity", [Candidate(make_product("S1"), 1.0, Reason.POPULARITY)])
    service.popularity = stub

    await service.generate_recommendations("P1", None, 5)

    assert stub.calls == 1


@pytest.mark.asyncio
async def test_cache_expires_after_ttl(service, clock):
    await service.generate_recommendations("P1", None, 3)
    stub = StubSignal("popularity")
    service.popularity = stub

    clock.advance(timedelta(hours=24))
    await service.generate_recommendations("P1", None, 3)

    # expiry is strict: at exactly now + ttl the entry is no longer served
    assert stub.calls == 1


@pytest.mark.asyncio
async def test_anonymous_and_personal_cache_entries_are_separate(service):
    await service.generate_recommendations("P1", None, 3)
    stub = StubSignal("collaborative")
    service.collaborative = stub

    await service.generate_recommendations("P1", "u1", 3)

    assert stub.calls == 1


@pytest.mark.asyncio
async def test_all_signals_failing_falls_back_to_top_rated_same_category(service):
    for attr in ("collaborative", "content", "history", "wishlist"):
        setattr(service, attr, StubSignal(attr, error=RuntimeError("down")))

    recs = await service.generate_recommendations("P1", "u1", 3)

    # rating desc, then rating count desc, bags excluded
    assert [r.product.id for r in recs] == ["S2", "S1", "S3"]
    assert all(r.total_score == 0.3 and r.reasons == [Reason.FALLBACK] for r in recs)


@pytest.mark.asyncio
async def test_fallback_results_are_not_cached(service):
    for attr in ("content", "popularity"):
        setattr(service, attr, StubSignal(attr, error=RuntimeError("down")))
    await service.generate_recommendations("P1", None, 3)

    healthy = StubSignal("popularity", [Candidate(make_product("B1"), 1.0, Reason.POPULARITY)])
    service.popularity = healthy
    service.content = StubSignal("content")
    await service.generate_recommendations("P1", None, 3)

    assert healthy.calls == 1


@pytest.mark.asyncio
async def test_partial_signal_failure_degrades_without_fallback(service):
    service.collaborative = StubSignal("collaborative", error=RuntimeError("down"))
    service.content = StubSignal("content", [Candidate(make_product("S1"), 1.0, Reason.CONTENT_SIMILARITY)])
    service.history = StubSignal("history", error=RuntimeError("down"))
    service.wishlist = StubSignal("wishlist")

    recs = await service.generate_recommendations("P1", "u1", 6)

    assert [(r.product.id, r.reasons) for r in recs] == [("S1", [Reason.CONTENT_SIMILARITY])]


@pytest.mark.asyncio
async def test_all_signals_empty_is_an_empty_result_not_a_fallback(service):
    for attr in ("collaborative", "content", "history", "wishlist"):
        setattr(service, attr, StubSignal(attr))
    assert await service.generate_recommendations("P1", "u1", 6) == []


@pytest.mark.asyncio
async def test_catalog_outage_returns_empty_list(service, shoe_catalog):
    shoe_catalog.fail_on.add("find_by_id")
    assert await service.generate_recommendations("P1", None, 6) == []


@pytest.mark.asyncio
async def test_limit_is_clamped(service):
    assert service.clamp_limit(None) == 6
    assert service.clamp_limit(0) == 1
    assert service.clamp_limit(10_000) == 50

    recs = await service.generate_recommendations("P1", None, 2)
    assert len(recs) <= 2


@pytest.mark.asyncio
async def test_invalidate_cache_forces_recompute(service):
    await service.generate_recommendations("P1", None, 3)
    assert await service.invalidate_cache("P1", None) == 1
    assert await service.invalidate_cache("P1", None) == 0

    stub = StubSignal("popularity")
    service.popularity = stub
    await service.generate_recommendations("P1", None, 3)
    assert stub.calls == 1


@pytest.mark.asyncio
async def test_purge_expired_cache(service, clock):
    await service.generate_recommendations("P1", None, 3)
    assert await service.purge_expired_cache() == 0
    clock.advance(timedelta(hours=25))
    assert await service.purge_expired_cache() == 1
