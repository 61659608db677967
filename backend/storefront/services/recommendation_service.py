"""
Recommendation and view-tracking facade.

generate_recommendations() runs
    cache check -> signal dispatch -> fusion -> cache write -> respond
and drops to a same-category fallback when dispatch or fusion blows up. The only
error a caller ever sees is ProductNotFoundError for an unknown target.

track_browsing_history() records a product view, folding repeat views within
the session window into one event. Storage failures propagate as TrackingError.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from storefront.core.config import RecommendationConfig
from storefront.repositories.base import AffinityStore, BehaviorLog, Catalog
from storefront.services.cache import RecommendationCache
from storefront.services.domain import Candidate, FusedRecommendation, Reason, ViewEvent, ViewMetadata
from storefront.services.fusion import fuse
from storefront.services.signals import (
    CollaborativeSignal,
    ContentSignal,
    HistorySignal,
    PopularitySignal,
    SignalContext,
    SignalResult,
    WishlistSignal,
)
from storefront.utils.timing import log_elapsed, now_ms

logger = logging.getLogger(__name__)

FALLBACK_SCORE = 0.3


class RecommendationError(Exception):
    """Base class for errors raised by the recommendation service."""
    pass


class ProductNotFoundError(RecommendationError):
    """The target product does not exist; there is nothing to recommend against."""

    def __init__(self, product_id: str):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class TrackingError(RecommendationError):
    """A view event could not be recorded."""
    pass


class AllSignalsFailedError(RecommendationError):
    """Every dispatched signal errored, as opposed to returning nothing."""

    def __init__(self, results: Sequence[SignalResult]):
        names = ", ".join(r.signal for r in results)
        super().__init__(f"All recommendation signals failed: {names}")
        self.results = list(results)


class RecommendationService:
    def __init__(
        self,
        catalog: Catalog,
        behavior_log: BehaviorLog,
        affinity_store: AffinityStore,
        cache: RecommendationCache,
        config: Optional[RecommendationConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.catalog = catalog
        self.behavior_log = behavior_log
        self.affinity_store = affinity_store
        self.cache = cache
        self.config = config or RecommendationConfig()
        self.clock = clock

        self.collaborative = CollaborativeSignal(self.config, catalog, behavior_log)
        self.content = ContentSignal(self.config, catalog)
        self.history = HistorySignal(self.config, catalog, behavior_log)
        self.wishlist = WishlistSignal(self.config, catalog, affinity_store)
        self.popularity = PopularitySignal(self.config, catalog)

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.config.default_limit
        return max(1, min(int(limit), self.config.max_limit))

    async def generate_recommendations(
        self,
        product_id: str,
        subject_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[FusedRecommendation]:
        limit = self.clamp_limit(limit)
        now = self.clock()
        t0 = now_ms()
        logger.info(
            "Generating recommendations for product %s, user %s, limit %d",
            product_id, subject_id or "anonymous", limit,
        )

        cached = await self.cache.get(product_id, subject_id, now)
        if cached is not None and len(cached) >= limit:
            logger.info("Using cached recommendations (%d found)", len(cached))
            return cached[:limit]

        try:
            target = await self.catalog.find_by_id(product_id)
            if target is None:
                raise ProductNotFoundError(product_id)

            ctx = SignalContext(target=target, subject_id=subject_id, limit=limit, now=now)
            if subject_id:
                outputs = await self._dispatch_personalized(ctx)
            else:
                outputs = await self._dispatch_generic(ctx)
            t1 = log_elapsed(t0, f"product={product_id} signal_dispatch")

            recommendations = fuse(outputs, limit)
            log_elapsed(t1, f"product={product_id} fusion")
        except ProductNotFoundError:
            raise
        except Exception as e:
            logger.warning(
                "Error generating recommendations for product %s, user %s: %s. Using fallback.",
                product_id, subject_id or "anonymous", e,
                exc_info=True,
            )
            return await self.fallback_recommendations(product_id, limit)

        await self.cache.put(product_id, subject_id, recommendations, now)
        logger.info("Generated %d recommendations for product %s", len(recommendations), product_id)
        return recommendations[:limit]

    async def _gather(self, ctx: SignalContext, weighted_signals) -> List[Tuple[List[Candidate], float]]:
        results: List[SignalResult] = await asyncio.gather(
            *(signal.run(ctx) for signal, _ in weighted_signals)
        )
        if results and all(not r.ok for r in results):
            raise AllSignalsFailedError(results)
        return [(result.candidates, weight) for result, (_, weight) in zip(results, weighted_signals)]

    async def _dispatch_personalized(self, ctx: SignalContext) -> List[Tuple[List[Candidate], float]]:
        logger.info("Generating personalized recommendations for user %s", ctx.subject_id)
        return await self._gather(ctx, [
            (self.collaborative, self.config.collaborative_weight),
            (self.content, self.config.content_weight),
            (self.history, self.config.history_weight),
            (self.wishlist, self.config.wishlist_weight),
        ])

    async def _dispatch_generic(self, ctx: SignalContext) -> List[Tuple[List[Candidate], float]]:
        logger.info("Generating generic recommendations for anonymous user")
        return await self._gather(ctx, [
            (self.content, self.config.generic_content_weight),
            (self.popularity, self.config.generic_popularity_weight),
        ])

    async def fallback_recommendations(self, product_id: str, limit: int) -> List[FusedRecommendation]:
        """Top rated products from the target's category; empty if even that fails."""
        try:
            logger.info("Using fallback recommendations for product %s", product_id)
            target = await self.catalog.find_by_id(product_id)
            if target is None:
                return []
            products = await self.catalog.top_rated(target.category, product_id, limit)
            return [
                FusedRecommendation(product=p, total_score=FALLBACK_SCORE, reasons=[Reason.FALLBACK])
                for p in products[:limit]
            ]
        except Exception as e:
            logger.warning("Fallback recommendations failed for product %s: %s", product_id, e, exc_info=True)
            return []

    async def invalidate_cache(self, product_id: str, subject_id: Optional[str] = None) -> int:
        deleted = await self.cache.invalidate(product_id, subject_id)
        logger.info(
            "Cleared %d cached recommendation entries for product %s, user %s",
            deleted, product_id, subject_id or "anonymous",
        )
        return deleted

    async def purge_expired_cache(self) -> int:
        return await self.cache.purge_expired(self.clock())

    async def track_browsing_history(
        self,
        subject_id: Optional[str],
        product_id: str,
        session_id: str,
        metadata: Optional[ViewMetadata] = None,
    ) -> ViewEvent:
        if not product_id or not session_id:
            raise ValueError("product_id and session_id are required")

        metadata = (metadata or ViewMetadata()).normalized()
        now = self.clock()
        logger.info(
            "Tracking browsing history - user: %s, product: %s, session: %s",
            subject_id or "anonymous", product_id, session_id,
        )

        try:
            if await self.catalog.find_by_id(product_id) is None:
                raise ProductNotFoundError(product_id)
            return await self.behavior_log.upsert_view(
                subject_id or None,
                product_id,
                session_id,
                metadata,
                now=now,
                window_start=now - self.config.session_window,
            )
        except ProductNotFoundError:
            raise
        except Exception as e:
            logger.error(
                "Browsing history tracking failed for product %s, session %s: %s",
                product_id, session_id, e,
                exc_info=True,
            )
            raise TrackingError(f"Failed to track view: {e}") from e
