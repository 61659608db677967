"""
Browsing history storage.

Serves the behavior reads of the recommendation signals, the per-session view
upsert used by tracking, and the analytics/maintenance queries behind the
browsing-history endpoints.
"""
import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple
from weakref import WeakValueDictionary

from sqlalchemy import case, delete, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.models import BrowsingHistory, Product
from storefront.repositories.catalog import product_to_info
from storefront.services.domain import (
    DailyTrend,
    HistoryEntry,
    PopularProduct,
    ProductAnalytics,
    ProductViewStats,
    ViewerStat,
    ViewEvent,
    ViewMetadata,
    ViewSource,
    merge_view,
    popularity_score,
)

logger = logging.getLogger(__name__)

WISHLIST_ADDS = func.sum(case((BrowsingHistory.added_to_wishlist.is_(True), 1), else_=0))
BAG_ADDS = func.sum(case((BrowsingHistory.added_to_bag.is_(True), 1), else_=0))


class HistoryEntryNotFoundError(LookupError):
    pass


class HistoryOwnershipError(PermissionError):
    pass


def row_to_event(row: BrowsingHistory, product: Optional[Product] = None) -> ViewEvent:
    return ViewEvent(
        id=str(row.id),
        subject_id=row.user_id,
        product_id=str(row.product_id),
        session_id=row.session_id,
        viewed_at=row.viewed_at,
        time_spent=row.time_spent or 0.0,
        scroll_depth=row.scroll_depth or 0.0,
        source=row.source or ViewSource.DIRECT.value,
        device_info=row.device_info or "",
        added_to_wishlist=bool(row.added_to_wishlist),
        added_to_bag=bool(row.added_to_bag),
        metadata=dict(row.extra or {}),
        product=product_to_info(product),
    )


def _apply_event(row: BrowsingHistory, event: ViewEvent) -> None:
    row.viewed_at = event.viewed_at
    row.time_spent = event.time_spent
    row.scroll_depth = event.scroll_depth
    row.source = event.source
    row.device_info = event.device_info
    row.added_to_wishlist = event.added_to_wishlist
    row.added_to_bag = event.added_to_bag
    row.extra = dict(event.metadata)


def _subject_condition(subject_id: Optional[str]):
    if subject_id is None:
        return BrowsingHistory.user_id.is_(None)
    return BrowsingHistory.user_id == subject_id


async def _lock_view_key(db: AsyncSession, key: Tuple[str, str, str]) -> None:
    """Transaction-scoped advisory lock on Postgres; other dialects rely on the in-process lock."""
    if db.get_bind().dialect.name != "postgresql":
        return
    await db.execute(select(func.pg_advisory_xact_lock(func.hashtext("|".join(key)))))


async def _merge_or_insert(
    db: AsyncSession,
    subject_id: Optional[str],
    product_id: str,
    session_id: str,
    metadata: ViewMetadata,
    now: datetime,
    window_start: datetime,
) -> ViewEvent:
    row = (
        await db.execute(
            select(BrowsingHistory)
            .where(
                _subject_condition(subject_id),
                BrowsingHistory.product_id == product_id,
                BrowsingHistory.session_id == session_id,
                BrowsingHistory.viewed_at >= window_start,
            )
            .order_by(BrowsingHistory.viewed_at.desc())
            .limit(1)
            .with_for_update()
        )
    ).scalars().first()

    if row is not None:
        event = merge_view(row_to_event(row), metadata, now)
        _apply_event(row, event)
        logger.info("Updated existing browsing entry for user: %s", subject_id or "anonymous")
        return event

    row = BrowsingHistory(
        user_id=subject_id,
        product_id=product_id,
        session_id=session_id,
        viewed_at=now,
        time_spent=metadata.time_spent or 0.0,
        scroll_depth=metadata.scroll_depth or 0.0,
        source=metadata.source or ViewSource.DIRECT.value,
        device_info=metadata.device_info or "",
        added_to_wishlist=bool(metadata.added_to_wishlist),
        added_to_bag=bool(metadata.added_to_bag),
        extra=dict(metadata.extra),
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    await db.flush()
    logger.info("Created new browsing entry for user: %s", subject_id or "anonymous")
    return row_to_event(row)


class SqlBehaviorLog:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        self._view_locks: "WeakValueDictionary[Tuple[str, str, str], asyncio.Lock]" = WeakValueDictionary()

    def _view_lock(self, key: Tuple[str, str, str]) -> asyncio.Lock:
        lock = self._view_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._view_locks[key] = lock
        return lock

    # --- reads used by the recommendation signals ---

    async def recent_viewers(self, product_id: str, limit: int) -> List[ViewerStat]:
        view_count = func.count(BrowsingHistory.id)
        last_viewed = func.max(BrowsingHistory.viewed_at)
        stmt = (
            select(BrowsingHistory.user_id, view_count, last_viewed)
            .where(BrowsingHistory.product_id == product_id, BrowsingHistory.user_id.is_not(None))
            .group_by(BrowsingHistory.user_id)
            .order_by(view_count.desc(), last_viewed.desc())
            .limit(limit)
        )
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()
        return [ViewerStat(subject_id=user_id, view_count=count, last_viewed=last) for user_id, count, last in rows]

    async def products_viewed_by(
        self,
        subject_ids: Sequence[str],
        exclude_product_id: str,
        exclude_subject_id: Optional[str] = None,
    ) -> List[ProductViewStats]:
        subject_ids = [sid for sid in subject_ids if sid and sid != exclude_subject_id]
        if not subject_ids:
            return []
        stmt = (
            select(
                BrowsingHistory.product_id,
                func.count(distinct(BrowsingHistory.user_id)),
                func.count(BrowsingHistory.id),
                func.avg(BrowsingHistory.time_spent),
                WISHLIST_ADDS,
                BAG_ADDS,
            )
            .where(
                BrowsingHistory.user_id.in_(subject_ids),
                BrowsingHistory.product_id != exclude_product_id,
            )
            .group_by(BrowsingHistory.product_id)
        )
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()
        return [
            ProductViewStats(
                product_id=str(product_id),
                unique_viewers=unique_viewers,
                total_views=total_views,
                avg_time_spent=float(avg_time) if avg_time is not None else None,
                wishlist_adds=int(wishlist_adds or 0),
                bag_adds=int(bag_adds or 0),
            )
            for product_id, unique_viewers, total_views, avg_time, wishlist_adds, bag_adds in rows
        ]

    async def subject_history(
        self,
        subject_id: str,
        since: datetime,
        exclude_product_id: Optional[str],
        limit: int,
    ) -> List[HistoryEntry]:
        conditions = [BrowsingHistory.user_id == subject_id, BrowsingHistory.viewed_at >= since]
        if exclude_product_id:
            conditions.append(BrowsingHistory.product_id != exclude_product_id)
        stmt = (
            select(BrowsingHistory.product_id, BrowsingHistory.viewed_at, Product)
            .outerjoin(Product, Product.id == BrowsingHistory.product_id)
            .where(*conditions)
            .order_by(BrowsingHistory.viewed_at.desc())
            .limit(limit)
        )
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()
        return [
            HistoryEntry(product_id=str(product_id), viewed_at=viewed_at, product=product_to_info(product))
            for product_id, viewed_at, product in rows
        ]

    # --- tracking ---

    async def upsert_view(
        self,
        subject_id: Optional[str],
        product_id: str,
        session_id: str,
        metadata: ViewMetadata,
        now: datetime,
        window_start: datetime,
    ) -> ViewEvent:
        metadata = metadata.normalized()
        key = (subject_id or "", product_id, session_id)
        # a row lock cannot cover a key that has no row yet: serialize per key instead
        async with self._view_lock(key):
            async with self.session_factory() as db:
                async with db.begin():
                    await _lock_view_key(db, key)
                    return await _merge_or_insert(db, subject_id, product_id, session_id, metadata, now, window_start)

    # --- history listing and analytics ---

    async def list_for_subject(
        self, subject_id: str, since: Optional[datetime], offset: int, limit: int
    ) -> List[ViewEvent]:
        conditions = [BrowsingHistory.user_id == subject_id]
        if since is not None:
            conditions.append(BrowsingHistory.viewed_at >= since)
        stmt = (
            select(BrowsingHistory, Product)
            .outerjoin(Product, Product.id == BrowsingHistory.product_id)
            .where(*conditions)
            .order_by(BrowsingHistory.viewed_at.desc(), BrowsingHistory.id)
            .offset(offset)
            .limit(limit)
        )
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()
        return [row_to_event(row, product) for row, product in rows]

    async def count_for_subject(self, subject_id: str, since: Optional[datetime]) -> int:
        conditions = [BrowsingHistory.user_id == subject_id]
        if since is not None:
            conditions.append(BrowsingHistory.viewed_at >= since)
        async with self.session_factory() as db:
            total = await db.scalar(select(func.count(BrowsingHistory.id)).where(*conditions))
        return int(total or 0)

    async def list_for_session(self, session_id: str, limit: int) -> List[ViewEvent]:
        stmt = (
            select(BrowsingHistory, Product)
            .outerjoin(Product, Product.id == BrowsingHistory.product_id)
            .where(BrowsingHistory.session_id == session_id)
            .order_by(BrowsingHistory.viewed_at.desc(), BrowsingHistory.id)
            .limit(limit)
        )
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()
        return [row_to_event(row, product) for row, product in rows]

    async def popular_products(
        self, since: datetime, limit: int, category: Optional[str] = None
    ) -> List[PopularProduct]:
        view_count = func.count(BrowsingHistory.id)
        # COUNT(DISTINCT) skips NULL, so anonymous views do not count as users
        unique_users = func.count(distinct(BrowsingHistory.user_id))
        score = view_count + unique_users * 2 + WISHLIST_ADDS * 3 + BAG_ADDS * 5

        stmt = (
            select(
                BrowsingHistory.product_id,
                view_count,
                unique_users,
                func.count(distinct(BrowsingHistory.session_id)),
                func.avg(BrowsingHistory.time_spent),
                func.avg(BrowsingHistory.scroll_depth),
                WISHLIST_ADDS,
                BAG_ADDS,
            )
            .where(BrowsingHistory.viewed_at >= since)
            .group_by(BrowsingHistory.product_id)
            .order_by(score.desc(), BrowsingHistory.product_id)
            .limit(limit)
        )
        if category:
            stmt = stmt.join(Product, Product.id == BrowsingHistory.product_id).where(Product.category == category)

        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()
            product_ids = [row[0] for row in rows]
            products = {}
            if product_ids:
                found = (await db.execute(select(Product).where(Product.id.in_(product_ids)))).scalars().all()
                products = {p.id: product_to_info(p) for p in found}

        results = []
        for product_id, views, users, sessions, avg_time, avg_scroll, wishlist_adds, bag_adds in rows:
            wishlist_adds = int(wishlist_adds or 0)
            bag_adds = int(bag_adds or 0)
            results.append(
                PopularProduct(
                    product_id=str(product_id),
                    view_count=views,
                    unique_users=users,
                    unique_sessions=sessions,
                    avg_time_spent=float(avg_time or 0.0),
                    avg_scroll_depth=float(avg_scroll or 0.0),
                    wishlist_adds=wishlist_adds,
                    bag_adds=bag_adds,
                    popularity_score=popularity_score(views, users, wishlist_adds, bag_adds),
                    product=products.get(product_id),
                )
            )
        return results

    async def product_analytics(self, product_id: str, since: datetime) -> ProductAnalytics:
        conditions = [BrowsingHistory.product_id == product_id, BrowsingHistory.viewed_at >= since]
        totals_stmt = select(
            func.count(BrowsingHistory.id),
            func.count(distinct(BrowsingHistory.user_id)),
            func.count(distinct(BrowsingHistory.session_id)),
            func.avg(BrowsingHistory.time_spent),
            func.avg(BrowsingHistory.scroll_depth),
            WISHLIST_ADDS,
            BAG_ADDS,
        ).where(*conditions)

        day = func.date(BrowsingHistory.viewed_at)
        trends_stmt = (
            select(
                day,
                func.count(BrowsingHistory.id),
                func.count(distinct(BrowsingHistory.user_id)),
                func.count(distinct(BrowsingHistory.session_id)),
            )
            .where(*conditions)
            .group_by(day)
            .order_by(day)
        )

        async with self.session_factory() as db:
            views, users, sessions, avg_time, avg_scroll, wishlist_adds, bag_adds = (
                await db.execute(totals_stmt)
            ).one()
            trend_rows = (await db.execute(trends_stmt)).all()

        return ProductAnalytics(
            product_id=product_id,
            total_views=int(views or 0),
            unique_users=int(users or 0),
            unique_sessions=int(sessions or 0),
            avg_time_spent=float(avg_time or 0.0),
            avg_scroll_depth=float(avg_scroll or 0.0),
            wishlist_adds=int(wishlist_adds or 0),
            bag_adds=int(bag_adds or 0),
            # sqlite returns the day as text, postgres as a date
            daily_trends=[
                DailyTrend(date=str(d), views=v, unique_users=u, unique_sessions=s)
                for d, v, u, s in trend_rows
            ],
        )

    # --- maintenance ---

    async def clear_subject(self, subject_id: str, older_than: Optional[datetime] = None) -> int:
        conditions = [BrowsingHistory.user_id == subject_id]
        if older_than is not None:
            conditions.append(BrowsingHistory.viewed_at < older_than)
        async with self.session_factory() as db:
            async with db.begin():
                result = await db.execute(delete(BrowsingHistory).where(*conditions))
        return result.rowcount or 0

    async def update_engagement(
        self,
        event_id: str,
        subject_id: Optional[str] = None,
        time_spent: Optional[float] = None,
        scroll_depth: Optional[float] = None,
        added_to_wishlist: Optional[bool] = None,
        added_to_bag: Optional[bool] = None,
        now: Optional[datetime] = None,
    ) -> ViewEvent:
        """
        Raise engagement on an existing event. Time and scroll only ever grow; the
        flags are overwritten when given. A caller identifying as a different user
        than the event's owner is refused.
        """
        async with self.session_factory() as db:
            async with db.begin():
                row = await db.get(BrowsingHistory, event_id, with_for_update=True)
                if row is None:
                    raise HistoryEntryNotFoundError(event_id)
                if subject_id and row.user_id and row.user_id != subject_id:
                    raise HistoryOwnershipError(event_id)

                if time_spent is not None:
                    row.time_spent = max(max(float(time_spent), 0.0), row.time_spent or 0.0)
                if scroll_depth is not None:
                    clamped = min(max(float(scroll_depth), 0.0), 100.0)
                    row.scroll_depth = max(clamped, row.scroll_depth or 0.0)
                if added_to_wishlist is not None:
                    row.added_to_wishlist = bool(added_to_wishlist)
                if added_to_bag is not None:
                    row.added_to_bag = bool(added_to_bag)
                row.updated_at = now or datetime.utcnow()
                return row_to_event(row)

    async def purge_older_than(self, cutoff: datetime) -> int:
        async with self.session_factory() as db:
            async with db.begin():
                result = await db.execute(delete(BrowsingHistory).where(BrowsingHistory.viewed_at < cutoff))
        deleted = result.rowcount or 0
        if deleted:
            logger.info("Purged %d browsing history entries older than %s", deleted, cutoff.isoformat())
        return deleted
