"""
Cache-aside storage for fused recommendation lists.

One entry per (product, user) pair, with user None as the anonymous entry.
Entries live for the configured TTL; an entry is only served while
expires_at > now. Reads and writes are best-effort: a failing read is a miss
and a failing write is logged.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol, Tuple

from storefront.repositories.base import Catalog
from storefront.services.domain import FusedRecommendation, Reason, RecommendationAlgorithm

logger = logging.getLogger(__name__)


@dataclass
class CachedItem:
    product_id: str
    score: float
    reasons: List[Reason] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "score": self.score,
            "reasons": [r.value for r in self.reasons],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CachedItem":
        reasons = []
        for raw in data.get("reasons") or []:
            try:
                reasons.append(Reason(raw))
            except ValueError:
                logger.debug("Dropping unknown cached reason %r", raw)
        return cls(product_id=str(data["product_id"]), score=float(data.get("score") or 0.0), reasons=reasons)


@dataclass
class CacheEntry:
    product_id: str
    subject_id: Optional[str]
    items: List[CachedItem]
    algorithm: RecommendationAlgorithm
    last_updated: datetime
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return self.expires_at > now


class CacheStore(Protocol):
    async def load(self, product_id: str, subject_id: Optional[str]) -> Optional[CacheEntry]: ...

    async def save(self, entry: CacheEntry) -> None:
        """Insert or overwrite the entry for (entry.product_id, entry.subject_id)."""
        ...

    async def delete(self, product_id: str, subject_id: Optional[str]) -> int: ...

    async def delete_expired(self, now: datetime) -> int: ...


class InMemoryCacheStore:
    """Process-local store; useful for single-instance deployments and tests."""

    def __init__(self):
        self._entries: Dict[Tuple[str, Optional[str]], CacheEntry] = {}

    async def load(self, product_id: str, subject_id: Optional[str]) -> Optional[CacheEntry]:
        return self._entries.get((product_id, subject_id))

    async def save(self, entry: CacheEntry) -> None:
        self._entries[(entry.product_id, entry.subject_id)] = entry

    async def delete(self, product_id: str, subject_id: Optional[str]) -> int:
        return 1 if self._entries.pop((product_id, subject_id), None) is not None else 0

    async def delete_expired(self, now: datetime) -> int:
        dead = [key for key, entry in self._entries.items() if not entry.is_live(now)]
        for key in dead:
            del self._entries[key]
        return len(dead)


class RecommendationCache:
    def __init__(self, store: CacheStore, catalog: Catalog, ttl: timedelta = timedelta(hours=24)):
        self.store = store
        self.catalog = catalog
        self.ttl = ttl

    async def get(
        self, product_id: str, subject_id: Optional[str], now: datetime
    ) -> Optional[List[FusedRecommendation]]:
        """Return the live cached list with products resolved, or None on miss/expiry/error."""
        try:
            entry = await self.store.load(product_id, subject_id)
            if entry is None or not entry.is_live(now):
                return None

            products = await self.catalog.find_by_ids([item.product_id for item in entry.items])
            by_id = {p.id: p for p in products}
            recommendations = []
            for item in entry.items:
                product = by_id.get(item.product_id)
                # products removed or deactivated since caching are skipped
                if product is None:
                    continue
                recommendations.append(
                    FusedRecommendation(product=product, total_score=item.score, reasons=list(item.reasons))
                )
            return recommendations
        except Exception as e:
            logger.warning(
                "Cache retrieval failed for product %s, user %s: %s",
                product_id, subject_id or "anonymous", e,
                exc_info=True,
            )
            return None

    async def put(
        self,
        product_id: str,
        subject_id: Optional[str],
        recommendations: List[FusedRecommendation],
        now: datetime,
    ) -> None:
        if not recommendations:
            logger.info("No recommendations to cache for product %s", product_id)
            return

        entry = CacheEntry(
            product_id=product_id,
            subject_id=subject_id,
            items=[
                CachedItem(product_id=str(rec.product.id), score=rec.total_score, reasons=list(rec.reasons))
                for rec in recommendations
            ],
            algorithm=RecommendationAlgorithm.HYBRID if subject_id else RecommendationAlgorithm.GENERIC,
            last_updated=now,
            expires_at=now + self.ttl,
        )
        try:
            await self.store.save(entry)
            logger.info("Cached %d recommendations for product %s", len(entry.items), product_id)
        except Exception as e:
            logger.warning(
                "Cache storage failed for product %s, user %s: %s",
                product_id, subject_id or "anonymous", e,
                exc_info=True,
            )

    async def invalidate(self, product_id: str, subject_id: Optional[str]) -> int:
        return await self.store.delete(product_id, subject_id)

    async def purge_expired(self, now: datetime) -> int:
        return await self.store.delete_expired(now)
