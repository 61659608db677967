from datetime import datetime
from typing import List, Optional

from storefront.schemas.common import CamelModel
from storefront.schemas.product import ProductSummary
from storefront.services.domain import FusedRecommendation, Reason


class RecommendationItem(CamelModel):
    product: ProductSummary
    score: float
    reasons: List[Reason]
    reason_labels: List[str]  # display text for reasons, same order

    @classmethod
    def from_recommendation(cls, rec: FusedRecommendation) -> "RecommendationItem":
        return cls(
            product=ProductSummary.from_info(rec.product),
            score=round(rec.total_score, 4),
            reasons=list(rec.reasons),
            reason_labels=[reason.label for reason in rec.reasons],
        )


class RecommendationMeta(CamelModel):
    count: int
    user_id: str  # "anonymous" when no subject
    timestamp: datetime
    algorithm: str  # "personalized" | "generic"


class RecommendationsData(CamelModel):
    recommendations: List[RecommendationItem]
    meta: RecommendationMeta


class ClearCacheData(CamelModel):
    deleted_count: int
    product_id: str
    user_id: Optional[str] = None
