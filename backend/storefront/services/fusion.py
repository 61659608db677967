"""Weighted fusion of signal outputs into one ranked, de-duplicated list."""
from typing import Dict, List, Sequence, Tuple

from storefront.services.domain import Candidate, FusedRecommendation


def fuse(
    signal_outputs: Sequence[Tuple[Sequence[Candidate], float]],
    limit: int,
) -> List[FusedRecommendation]:
    """
    Merge (candidates, weight) pairs.

    A product proposed by several signals gets one entry whose total_score is the
    sum of score * weight over every proposal, with the reasons in proposal order.
    Sorting is stable, so ties keep first-seen order.
    """
    merged: Dict[str, FusedRecommendation] = {}

    for candidates, weight in signal_outputs:
        for candidate in candidates:
            product_id = str(candidate.product.id)
            weighted = candidate.score * weight
            existing = merged.get(product_id)
            if existing is not None:
                existing.total_score += weighted
                existing.reasons.append(candidate.reason)
                for key, value in (candidate.metadata or {}).items():
                    existing.metadata.setdefault(key, value)
            else:
                merged[product_id] = FusedRecommendation(
                    product=candidate.product,
                    total_score=weighted,
                    reasons=[candidate.reason],
                    metadata=dict(candidate.metadata or {}),
                )

    ranked = sorted(merged.values(), key=lambda rec: rec.total_score, reverse=True)
    return ranked[: max(limit, 0)]
