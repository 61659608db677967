"""
Collaborator interfaces consumed by the recommendation engine.

The engine only talks to these protocols; the SQLAlchemy implementations live
next to this module and the tests substitute in-memory ones.
"""
from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from storefront.services.domain import (
    HistoryEntry,
    ProductFilter,
    ProductInfo,
    ProductViewStats,
    ViewerStat,
    ViewEvent,
    ViewMetadata,
    WishlistEntry,
)


class Catalog(Protocol):
    """Read-only product lookup. Inactive products are never returned by the query methods."""

    async def find_by_id(self, product_id: str) -> Optional[ProductInfo]: ...

    async def find_by_ids(self, product_ids: Sequence[str]) -> List[ProductInfo]: ...

    async def find_many(self, product_filter: ProductFilter, limit: int) -> List[ProductInfo]: ...

    async def top_rated(self, category: Optional[str], exclude_id: str, limit: int) -> List[ProductInfo]:
        """Same-category products ordered by rating desc, then rating count desc."""
        ...

    async def most_popular(self, exclude_id: str, limit: int) -> List[ProductInfo]:
        """Products ordered by rating*20 + rating_count*2 + popularity, descending."""
        ...


class BehaviorLog(Protocol):
    async def recent_viewers(self, product_id: str, limit: int) -> List[ViewerStat]:
        """Authenticated viewers of a product by view count desc, then most recent view desc."""
        ...

    async def products_viewed_by(
        self,
        subject_ids: Sequence[str],
        exclude_product_id: str,
        exclude_subject_id: Optional[str] = None,
    ) -> List[ProductViewStats]: ...

    async def subject_history(
        self,
        subject_id: str,
        since: datetime,
        exclude_product_id: Optional[str],
        limit: int,
    ) -> List[HistoryEntry]:
        """Newest-first views with the viewed product resolved."""
        ...

    async def upsert_view(
        self,
        subject_id: Optional[str],
        product_id: str,
        session_id: str,
        metadata: ViewMetadata,
        now: datetime,
        window_start: datetime,
    ) -> ViewEvent:
        """Merge into the live event viewed at or after window_start, or insert a new one."""
        ...


class AffinityStore(Protocol):
    async def list_for(self, subject_id: str, limit: int) -> List[WishlistEntry]: ...
