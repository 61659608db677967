"""Pytest configuration for backend tests."""
import os
import sys
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence
import uuid

import pytest
import pytest_asyncio

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Never start the maintenance scheduler from tests
os.environ.setdefault("MAINTENANCE_ENABLED", "false")

from storefront.database import Base, build_engine, build_session_factory  # noqa: E402
from storefront.services.domain import (  # noqa: E402
    HistoryEntry,
    ProductFilter,
    ProductInfo,
    ProductViewStats,
    ViewerStat,
    ViewEvent,
    ViewMetadata,
    WishlistEntry,
    merge_view,
)

# Import the entire models module to ensure all models are registered with Base.metadata
import storefront.models  # noqa: F401,E402


def make_product(product_id: str, **kwargs) -> ProductInfo:
    kwargs.setdefault("name", f"Product {product_id}")
    return ProductInfo(id=product_id, **kwargs)


class FakeCatalog:
    """In-memory Catalog with per-method call counters."""

    def __init__(self, products: Sequence[ProductInfo] = ()):
        self.products: Dict[str, ProductInfo] = {p.id: p for p in products}
        self.calls: Counter = Counter()
        self.fail_on: set = set()

    def _check(self, method: str):
        self.calls[method] += 1
        if method in self.fail_on:
            raise RuntimeError(f"catalog.{method} unavailable")

    def _active(self) -> List[ProductInfo]:
        return [p for p in self.products.values() if p.is_active]

    async def find_by_id(self, product_id: str) -> Optional[ProductInfo]:
        self._check("find_by_id")
        return self.products.get(product_id)

    async def find_by_ids(self, product_ids: Sequence[str]) -> List[ProductInfo]:
        self._check("find_by_ids")
        active = {p.id: p for p in self._active()}
        return [active[pid] for pid in product_ids if pid in active]

    async def find_many(self, product_filter: ProductFilter, limit: int) -> List[ProductInfo]:
        self._check("find_many")
        matches = []
        for p in self._active():
            if product_filter.exclude_id and p.id == product_filter.exclude_id:
                continue
            if product_filter.price_min is not None and (p.price is None or p.price < product_filter.price_min):
                continue
            if product_filter.price_max is not None and (p.price is None or p.price > product_filter.price_max):
                continue
            facets = []
            if product_filter.categories:
                facets.append(p.category in product_filter.categories)
            if product_filter.brands:
                facets.append(p.brand in product_filter.brands)
            if facets and not (any(facets) if product_filter.match_any else all(facets)):
                continue
            matches.append(p)
        return matches[:limit]

    async def top_rated(self, category: Optional[str], exclude_id: str, limit: int) -> List[ProductInfo]:
        self._check("top_rated")
        same = [p for p in self._active() if p.id != exclude_id and (category is None or p.category == category)]
        same.sort(key=lambda p: (-(p.rating or 0), -(p.rating_count or 0), p.id))
        return same[:limit]

    async def most_popular(self, exclude_id: str, limit: int) -> List[ProductInfo]:
        self._check("most_popular")
        others = [p for p in self._active() if p.id != exclude_id]
        others.sort(
            key=lambda p: (-((p.rating or 0) * 20 + (p.rating_count or 0) * 2 + (p.popularity or 0)), p.id)
        )
        return others[:limit]


class FakeBehaviorLog:
    """In-memory BehaviorLog over a list of ViewEvents."""

    def __init__(self, catalog: Optional[FakeCatalog] = None):
        self.catalog = catalog
        self.events: List[ViewEvent] = []
        self.calls: Counter = Counter()
        self.fail_on: set = set()

    def _check(self, method: str):
        self.calls[method] += 1
        if method in self.fail_on:
            raise RuntimeError(f"behavior_log.{method} unavailable")

    def add_view(self, subject_id, product_id, viewed_at, session_id="s1", **kwargs) -> ViewEvent:
        event = ViewEvent(
            id=str(uuid.uuid4()),
            subject_id=subject_id,
            product_id=product_id,
            session_id=session_id,
            viewed_at=viewed_at,
            **kwargs,
        )
        self.events.append(event)
        return event

    async def recent_viewers(self, product_id: str, limit: int) -> List[ViewerStat]:
        self._check("recent_viewers")
        by_subject: Dict[str, List[datetime]] = {}
        for e in self.events:
            if e.product_id == product_id and e.subject_id:
                by_subject.setdefault(e.subject_id, []).append(e.viewed_at)
        stats = [ViewerStat(s, len(ts), max(ts)) for s, ts in by_subject.items()]
        stats.sort(key=lambda v: (v.view_count, v.last_viewed), reverse=True)
        return stats[:limit]

    async def products_viewed_by(self, subject_ids, exclude_product_id, exclude_subject_id=None):
        self._check("products_viewed_by")
        grouped: Dict[str, List[ViewEvent]] = {}
        for e in self.events:
            if e.subject_id in subject_ids and e.subject_id != exclude_subject_id and e.product_id != exclude_product_id:
                grouped.setdefault(e.product_id, []).append(e)
        return [
            ProductViewStats(
                product_id=pid,
                unique_viewers=len({e.subject_id for e in evs}),
                total_views=len(evs),
                avg_time_spent=sum(e.time_spent for e in evs) / len(evs),
                wishlist_adds=sum(1 for e in evs if e.added_to_wishlist),
                bag_adds=sum(1 for e in evs if e.added_to_bag),
            )
            for pid, evs in grouped.items()
        ]

    async def subject_history(self, subject_id, since, exclude_product_id, limit) -> List[HistoryEntry]:
        self._check("subject_history")
        events = [
            e for e in self.events
            if e.subject_id == subject_id and e.viewed_at >= since and e.product_id != exclude_product_id
        ]
        events.sort(key=lambda e: e.viewed_at, reverse=True)
        products = self.catalog.products if self.catalog else {}
        return [HistoryEntry(e.product_id, e.viewed_at, products.get(e.product_id)) for e in events[:limit]]

    async def upsert_view(self, subject_id, product_id, session_id, metadata: ViewMetadata, now, window_start):
        self._check("upsert_view")
        metadata = metadata.normalized()
        live = [
            (i, e) for i, e in enumerate(self.events)
            if e.subject_id == subject_id and e.product_id == product_id
            and e.session_id == session_id and e.viewed_at >= window_start
        ]
        if live:
            index, existing = max(live, key=lambda pair: pair[1].viewed_at)
            merged = merge_view(existing, metadata, now)
            self.events[index] = merged
            return merged
        return self.add_view(
            subject_id,
            product_id,
            now,
            session_id=session_id,
            time_spent=metadata.time_spent or 0.0,
            scroll_depth=metadata.scroll_depth or 0.0,
            source=metadata.source or "direct",
            device_info=metadata.device_info or "",
            added_to_wishlist=bool(metadata.added_to_wishlist),
            added_to_bag=bool(metadata.added_to_bag),
            metadata=dict(metadata.extra),
        )


class FakeAffinityStore:
    def __init__(self, catalog: Optional[FakeCatalog] = None):
        self.catalog = catalog
        self.wishlists: Dict[str, List[str]] = {}
        self.calls: Counter = Counter()

    async def list_for(self, subject_id: str, limit: int) -> List[WishlistEntry]:
        self.calls["list_for"] += 1
        products = self.catalog.products if self.catalog else {}
        return [WishlistEntry(pid, products.get(pid)) for pid in self.wishlists.get(subject_id, [])[:limit]]


class FrozenClock:
    """Injectable clock for the service; advance() moves time forward."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta):
        self.now = self.now + delta


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def behavior_log(catalog) -> FakeBehaviorLog:
    return FakeBehaviorLog(catalog)


@pytest.fixture
def affinity_store(catalog) -> FakeAffinityStore:
    return FakeAffinityStore(catalog)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 6, 1, 12, 0, 0))


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """
    async_sessionmaker over a throwaway SQLite file.

    A file (not :memory:) so that concurrent sessions see the same database.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield build_session_factory(engine)

    await engine.dispose()


@pytest_asyncio.fixture
async def seeded(session_factory):
    """A small shoe/bag catalog: P1 is the usual target, S4 is inactive."""
    from storefront.models import Product

    async with session_factory() as db:
        db.add_all([
            Product(id="P1", name="Trail Runner", brand="Acme", category="shoes", price=2000,
                    rating=4.0, rating_count=10, popularity=5),
            Product(id="S1", name="Road Runner", brand="Acme", category="shoes", price=1800,
                    rating=4.8, rating_count=5, colors=["red", "blue"]),
            Product(id="S2", name="City Sneaker", brand="Globex", category="shoes", price=2200,
                    rating=4.8, rating_count=50),
            Product(id="S3", name="Boot", brand="Initech", category="shoes", price=5000, rating=3.0,
                    rating_count=100),
            Product(id="S4", name="Retired Shoe", brand="Acme", category="shoes", price=1900, is_active=False),
            Product(id="S5", name="Legacy Shoe", brand="Acme", category="shoes", price=2100, is_active=None),
            Product(id="B1", name="Tote", brand="Globex", category="bags", price=1900, rating=5.0,
                    rating_count=500),
        ])
        await db.commit()
    return session_factory
