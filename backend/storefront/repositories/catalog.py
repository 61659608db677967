"""SQLAlchemy-backed product catalog (read-only)."""
from typing import List, Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from storefront.models import Product
from storefront.services.domain import ProductFilter, ProductInfo

# NULL is_active counts as active
ACTIVE = or_(Product.is_active.is_(None), Product.is_active.is_(True))

POPULARITY_ORDER = (
    func.coalesce(Product.rating, 0) * 20
    + func.coalesce(Product.rating_count, 0) * 2
    + func.coalesce(Product.popularity, 0)
)


def product_to_info(row: Optional[Product]) -> Optional[ProductInfo]:
    if row is None:
        return None
    return ProductInfo(
        id=str(row.id),
        name=row.name or "",
        brand=row.brand,
        price=row.price,
        category=row.category,
        subcategory=row.subcategory,
        rating=row.rating,
        rating_count=row.rating_count,
        popularity=row.popularity,
        is_active=row.is_active is not False,
        colors=tuple(row.colors or ()),
        sizes=tuple(row.sizes or ()),
    )


def filter_conditions(product_filter: ProductFilter) -> list:
    conditions = [ACTIVE]
    if product_filter.exclude_id:
        conditions.append(Product.id != product_filter.exclude_id)
    if product_filter.price_min is not None:
        conditions.append(Product.price >= product_filter.price_min)
    if product_filter.price_max is not None:
        conditions.append(Product.price <= product_filter.price_max)

    facets = []
    if product_filter.categories:
        facets.append(Product.category.in_(list(product_filter.categories)))
    if product_filter.brands:
        facets.append(Product.brand.in_(list(product_filter.brands)))
    if facets:
        conditions.append(or_(*facets) if product_filter.match_any else and_(*facets))
    return conditions


class SqlCatalog:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def find_by_id(self, product_id: str) -> Optional[ProductInfo]:
        """Direct lookup; returns the product even when it is inactive."""
        async with self.session_factory() as db:
            row = await db.get(Product, str(product_id))
            return product_to_info(row)

    async def find_by_ids(self, product_ids: Sequence[str]) -> List[ProductInfo]:
        ids = [str(pid) for pid in product_ids]
        if not ids:
            return []
        async with self.session_factory() as db:
            rows = (await db.execute(select(Product).where(Product.id.in_(ids), ACTIVE))).scalars().all()
        by_id = {row.id: product_to_info(row) for row in rows}
        return [by_id[pid] for pid in ids if pid in by_id]

    async def find_many(self, product_filter: ProductFilter, limit: int) -> List[ProductInfo]:
        stmt = (
            select(Product)
            .where(*filter_conditions(product_filter))
            .order_by(func.coalesce(Product.rating, 0).desc(), Product.id)
            .limit(limit)
        )
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).scalars().all()
        return [product_to_info(row) for row in rows]

    async def top_rated(self, category: Optional[str], exclude_id: str, limit: int) -> List[ProductInfo]:
        conditions = [ACTIVE, Product.id != exclude_id]
        if category is not None:
            conditions.append(Product.category == category)
        stmt = (
            select(Product)
            .where(*conditions)
            .order_by(
                func.coalesce(Product.rating, 0).desc(),
                func.coalesce(Product.rating_count, 0).desc(),
                Product.id,
            )
            .limit(limit)
        )
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).scalars().all()
        return [product_to_info(row) for row in rows]

    async def most_popular(self, exclude_id: str, limit: int) -> List[ProductInfo]:
        stmt = (
            select(Product)
            .where(ACTIVE, Product.id != exclude_id)
            .order_by(POPULARITY_ORDER.desc(), Product.id)
            .limit(limit)
        )
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).scalars().all()
        return [product_to_info(row) for row in rows]
