"""Recommendation cache persisted in the product_recommendations table."""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from storefront.models import ProductRecommendation
from storefront.services.cache import CacheEntry, CachedItem
from storefront.services.domain import RecommendationAlgorithm

logger = logging.getLogger(__name__)


def _key_conditions(product_id: str, subject_id: Optional[str]) -> list:
    # a unique index would not cover the NULL (anonymous) subject, so match it explicitly
    conditions = [ProductRecommendation.for_product_id == product_id]
    if subject_id is None:
        conditions.append(ProductRecommendation.user_id.is_(None))
    else:
        conditions.append(ProductRecommendation.user_id == subject_id)
    return conditions


class SqlCacheStore:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def load(self, product_id: str, subject_id: Optional[str]) -> Optional[CacheEntry]:
        stmt = (
            select(ProductRecommendation)
            .where(*_key_conditions(product_id, subject_id))
            .order_by(ProductRecommendation.last_updated.desc())
            .limit(1)
        )
        async with self.session_factory() as db:
            row = (await db.execute(stmt)).scalars().first()
        if row is None:
            return None
        return CacheEntry(
            product_id=row.for_product_id,
            subject_id=row.user_id,
            items=[CachedItem.from_dict(item) for item in (row.recommended_products or [])],
            algorithm=RecommendationAlgorithm(row.algorithm),
            last_updated=row.last_updated,
            expires_at=row.expires_at,
        )

    async def save(self, entry: CacheEntry) -> None:
        payload = [item.to_dict() for item in entry.items]
        async with self.session_factory() as db:
            async with db.begin():
                rows = (
                    await db.execute(
                        select(ProductRecommendation)
                        .where(*_key_conditions(entry.product_id, entry.subject_id))
                        .order_by(ProductRecommendation.last_updated.desc())
                        .with_for_update()
                    )
                ).scalars().all()

                if rows:
                    row = rows[0]
                    for duplicate in rows[1:]:
                        await db.delete(duplicate)
                    row.recommended_products = payload
                    row.algorithm = entry.algorithm.value
                    row.last_updated = entry.last_updated
                    row.expires_at = entry.expires_at
                else:
                    db.add(
                        ProductRecommendation(
                            for_product_id=entry.product_id,
                            user_id=entry.subject_id,
                            recommended_products=payload,
                            algorithm=entry.algorithm.value,
                            last_updated=entry.last_updated,
                            expires_at=entry.expires_at,
                        )
                    )

    async def delete(self, product_id: str, subject_id: Optional[str]) -> int:
        async with self.session_factory() as db:
            async with db.begin():
                result = await db.execute(
                    delete(ProductRecommendation).where(*_key_conditions(product_id, subject_id))
                )
        return result.rowcount or 0

    async def delete_expired(self, now: datetime) -> int:
        async with self.session_factory() as db:
            async with db.begin():
                result = await db.execute(
                    delete(ProductRecommendation).where(ProductRecommendation.expires_at <= now)
                )
        deleted = result.rowcount or 0
        if deleted:
            logger.info("Purged %d expired recommendation cache entries", deleted)
        return deleted
