"""
Candidate generators for the hybrid recommender.

Each signal reads the catalog / behavior log / wishlist and proposes scored
candidates for a target product. Signals never raise to the caller: run()
converts any failure or timeout into an empty SignalResult carrying the error,
so the facade can tell "failed" apart from "had nothing to say".
"""
import asyncio
import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from storefront.core.config import RecommendationConfig
from storefront.repositories.base import AffinityStore, BehaviorLog, Catalog
from storefront.services import similarity
from storefront.services.domain import Candidate, ProductFilter, ProductInfo, ProductViewStats, Reason
from storefront.utils.timing import now_ms

logger = logging.getLogger(__name__)

WISHLIST_SCORE = 0.7
POPULARITY_SCORE = 0.5
DEFAULT_WISHLIST_PRICE = 1000.0


class SignalError(Exception):
    """A signal generator failed; the recommendation is computed without it."""

    def __init__(self, signal: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{signal}: {message}")
        self.signal = signal
        self.cause = cause


@dataclass
class SignalResult:
    signal: str
    candidates: List[Candidate] = field(default_factory=list)
    error: Optional[SignalError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class SignalContext:
    """Everything a signal needs to know about the request."""
    target: ProductInfo
    subject_id: Optional[str]
    limit: int
    now: datetime


class Signal:
    name = "signal"

    def __init__(self, config: RecommendationConfig):
        self.config = config

    async def generate(self, ctx: SignalContext) -> List[Candidate]:
        raise NotImplementedError

    async def run(self, ctx: SignalContext) -> SignalResult:
        """generate() with a soft timeout; failures become an empty result."""
        start = now_ms()
        timeout = self.config.signal_timeout_seconds
        try:
            if timeout:
                candidates = await asyncio.wait_for(self.generate(ctx), timeout=timeout)
            else:
                candidates = await self.generate(ctx)
        except asyncio.TimeoutError as e:
            logger.warning(
                "Signal %s timed out after %.2fs for product %s",
                self.name, timeout, ctx.target.id,
            )
            return SignalResult(self.name, [], SignalError(self.name, "timed out", e))
        except Exception as e:
            logger.warning(
                "Signal %s failed for product %s, user %s: %s",
                self.name, ctx.target.id, ctx.subject_id or "anonymous", e,
                exc_info=True,
            )
            return SignalResult(self.name, [], SignalError(self.name, str(e) or type(e).__name__, e))

        logger.debug(
            "Signal %s produced %d candidates in %.2fms",
            self.name, len(candidates), now_ms() - start,
        )
        return SignalResult(self.name, candidates)


def collaborative_engagement(stats: ProductViewStats) -> float:
    return (
        0.3 * stats.total_views
        + 0.2 * (stats.avg_time_spent or 0.0)
        + 0.25 * stats.wishlist_adds
        + 0.25 * stats.bag_adds
    )


class CollaborativeSignal(Signal):
    """Users who viewed this product also viewed..."""
    name = "collaborative"

    def __init__(self, config: RecommendationConfig, catalog: Catalog, behavior_log: BehaviorLog):
        super().__init__(config)
        self.catalog = catalog
        self.behavior_log = behavior_log

    async def generate(self, ctx: SignalContext) -> List[Candidate]:
        viewers = await self.behavior_log.recent_viewers(ctx.target.id, self.config.cohort_size)
        if not viewers:
            logger.info("No similar users found for collaborative filtering on %s", ctx.target.id)
            return []

        stats = await self.behavior_log.products_viewed_by(
            [viewer.subject_id for viewer in viewers],
            exclude_product_id=ctx.target.id,
            exclude_subject_id=ctx.subject_id,
        )
        ranked = sorted(
            ((s, collaborative_engagement(s)) for s in stats),
            key=lambda pair: (pair[0].unique_viewers, pair[1]),
            reverse=True,
        )[: self.config.collaborative_cap]
        if not ranked:
            return []

        products = await self.catalog.find_by_ids([s.product_id for s, _ in ranked])
        by_id: Dict[str, ProductInfo] = {p.id: p for p in products}

        candidates = []
        for s, engagement in ranked:
            product = by_id.get(s.product_id)
            if product is None:
                continue
            candidates.append(
                Candidate(
                    product=product,
                    score=min(engagement / 100, 1.0),
                    reason=Reason.COLLABORATIVE_FILTERING,
                    metadata={"viewerCount": s.unique_viewers, "totalViews": s.total_views},
                )
            )
        logger.info("Collaborative filtering found %d recommendations", len(candidates))
        return candidates


class ContentSignal(Signal):
    """Same category, similar price, scored by attribute similarity."""
    name = "content"

    def __init__(self, config: RecommendationConfig, catalog: Catalog):
        super().__init__(config)
        self.catalog = catalog

    def build_filter(self, target: ProductInfo) -> ProductFilter:
        price_min = price_max = None
        if target.price and target.price > 0:
            band = target.price * self.config.content_price_band
            price_min, price_max = target.price - band, target.price + band
        return ProductFilter(
            categories=[target.category] if target.category else None,
            price_min=price_min,
            price_max=price_max,
            exclude_id=target.id,
        )

    async def generate(self, ctx: SignalContext) -> List[Candidate]:
        products = await self.catalog.find_many(self.build_filter(ctx.target), self.config.content_cap)

        candidates = [
            Candidate(product=p, score=similarity.score(ctx.target, p), reason=Reason.CONTENT_SIMILARITY)
            for p in products
        ]
        candidates = [c for c in candidates if c.score > self.config.content_min_similarity]
        candidates.sort(key=lambda c: c.score, reverse=True)
        logger.info("Content-based filtering found %d recommendations", len(candidates))
        return candidates[: self.config.content_cap]


class HistorySignal(Signal):
    """Products from the categories and brands the user has been browsing lately."""
    name = "history"

    def __init__(self, config: RecommendationConfig, catalog: Catalog, behavior_log: BehaviorLog):
        super().__init__(config)
        self.catalog = catalog
        self.behavior_log = behavior_log

    async def generate(self, ctx: SignalContext) -> List[Candidate]:
        if not ctx.subject_id:
            return []

        history = await self.behavior_log.subject_history(
            ctx.subject_id,
            since=ctx.now - self.config.history_window,
            exclude_product_id=ctx.target.id,
            limit=self.config.history_sample,
        )
        if not history:
            logger.info("No recent browsing history found for user %s", ctx.subject_id)
            return []

        category_counts: Counter = Counter()
        brand_counts: Counter = Counter()
        for entry in history:
            if entry.product is None:
                continue
            if entry.product.category:
                category_counts[str(entry.product.category)] += 1
            if entry.product.brand:
                brand_counts[entry.product.brand] += 1

        # most_common keeps first-seen order among equal counts
        top_categories = [c for c, _ in category_counts.most_common(3)]
        top_brands = [b for b, _ in brand_counts.most_common(5)]
        if not top_categories and not top_brands:
            logger.info("No clear preferences in browsing history for user %s", ctx.subject_id)
            return []

        products = await self.catalog.find_many(
            ProductFilter(
                categories=top_categories or None,
                brands=top_brands or None,
                exclude_id=ctx.target.id,
                match_any=True,
            ),
            self.config.history_cap,
        )

        candidates = []
        for product in products:
            score = 0.0
            if product.category is not None and str(product.category) in top_categories:
                score += (3 - top_categories.index(str(product.category))) * 0.3
            if product.brand in top_brands:
                score += (5 - top_brands.index(product.brand)) * 0.2
            score = min(score, 1.0)
            if score > 0:
                candidates.append(Candidate(product=product, score=score, reason=Reason.USER_BEHAVIOR))
        logger.info("Browsing history filtering found %d recommendations", len(candidates))
        return candidates


class WishlistSignal(Signal):
    """Products in the user's wishlist categories around their typical wishlist price."""
    name = "wishlist"

    def __init__(self, config: RecommendationConfig, catalog: Catalog, affinity_store: AffinityStore):
        super().__init__(config)
        self.catalog = catalog
        self.affinity_store = affinity_store

    async def generate(self, ctx: SignalContext) -> List[Candidate]:
        if not ctx.subject_id:
            return []

        entries = await self.affinity_store.list_for(ctx.subject_id, self.config.wishlist_sample)
        if not entries:
            logger.info("No wishlist items found for user %s", ctx.subject_id)
            return []

        categories: List[str] = []
        prices: List[float] = []
        for entry in entries:
            product = entry.product
            if product is None:
                continue
            if product.category and str(product.category) not in categories:
                categories.append(str(product.category))
            if product.price and product.price > 0:
                prices.append(float(product.price))

        if prices:
            mean_price = sum(prices) / len(prices)
        else:
            mean_price = ctx.target.price or DEFAULT_WISHLIST_PRICE

        band = mean_price * self.config.wishlist_price_band
        price_min = price_max = None
        if mean_price > 0:
            price_min, price_max = max(mean_price - band, 0.0), mean_price + band

        products = await self.catalog.find_many(
            ProductFilter(
                categories=categories or None,
                price_min=price_min,
                price_max=price_max,
                exclude_id=ctx.target.id,
            ),
            self.config.wishlist_cap,
        )
        logger.info("Wishlist-based filtering found %d recommendations", len(products))
        return [Candidate(product=p, score=WISHLIST_SCORE, reason=Reason.WISHLIST_PATTERN) for p in products]


class PopularitySignal(Signal):
    """Generic-path filler: best rated / most popular products across the catalog."""
    name = "popularity"

    def __init__(self, config: RecommendationConfig, catalog: Catalog):
        super().__init__(config)
        self.catalog = catalog

    def cap_for(self, limit: int) -> int:
        return max(1, math.ceil(limit * self.config.popularity_multiplier))

    async def generate(self, ctx: SignalContext) -> List[Candidate]:
        products = await self.catalog.most_popular(ctx.target.id, self.cap_for(ctx.limit))
        return [Candidate(product=p, score=POPULARITY_SCORE, reason=Reason.POPULARITY) for p in products]
