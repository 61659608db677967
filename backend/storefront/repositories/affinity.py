"""Wishlist reads for the wishlist-pattern signal."""
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from storefront.models import Product, WishlistItem
from storefront.repositories.catalog import product_to_info
from storefront.services.domain import WishlistEntry


class SqlAffinityStore:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def list_for(self, subject_id: str, limit: int) -> List[WishlistEntry]:
        """Most recently added wishlist items first, with the product resolved."""
        stmt = (
            select(WishlistItem, Product)
            .outerjoin(Product, Product.id == WishlistItem.product_id)
            .where(WishlistItem.user_id == subject_id)
            .order_by(WishlistItem.added_at.desc(), WishlistItem.id)
            .limit(limit)
        )
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()
        return [
            WishlistEntry(product_id=str(item.product_id), product=product_to_info(product))
            for item, product in rows
        ]
