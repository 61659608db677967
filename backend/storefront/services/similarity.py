"""
Attribute similarity between two catalog products.

score() is a weighted mean of category, brand, price and rating agreement and
always lands in [0, 1]. Every factor is symmetric, so score(a, b) == score(b, a).
"""
import logging
import re
from typing import Optional

from storefront.services.domain import ProductInfo

logger = logging.getLogger(__name__)

CATEGORY_WEIGHT = 0.4
BRAND_WEIGHT = 0.2
PRICE_WEIGHT = 0.25
RATING_WEIGHT = 0.15

_WORD_RE = re.compile(r"\W+")


def _norm(value) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def _positive(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if number > 0 else 0.0


def category_similarity(a: ProductInfo, b: ProductInfo) -> float:
    cat_a, cat_b = _norm(a.category), _norm(b.category)
    if not cat_a or not cat_b:
        return 0.0
    if cat_a == cat_b:
        return 1.0

    sub_a, sub_b = _norm(a.subcategory), _norm(b.subcategory)
    if sub_a and sub_b and sub_a == sub_b:
        return 0.8

    # related categories, e.g. "shoes" and "running shoes"
    if cat_a in cat_b or cat_b in cat_a:
        return 0.3
    return 0.0


def brand_similarity(a: ProductInfo, b: ProductInfo) -> float:
    brand_a, brand_b = _norm(a.brand), _norm(b.brand)
    if not brand_a or not brand_b:
        return 0.0
    if brand_a == brand_b:
        return 1.0
    if brand_a in brand_b or brand_b in brand_a:
        return 0.7
    if text_similarity(brand_a, brand_b) > 0.8:
        return 0.5
    return 0.0


def price_similarity(a: ProductInfo, b: ProductInfo) -> float:
    """Stepped on |pa - pb| / mean(pa, pb); anything over 100% apart scores 0."""
    price_a, price_b = _positive(a.price), _positive(b.price)
    if price_a <= 0 or price_b <= 0:
        return 0.0

    relative_distance = abs(price_a - price_b) / ((price_a + price_b) / 2)
    if relative_distance <= 0.1:
        return 1.0
    if relative_distance <= 0.25:
        return 0.8
    if relative_distance <= 0.5:
        return 0.5
    if relative_distance <= 1.0:
        return 0.2
    return 0.0


def rating_similarity(a: ProductInfo, b: ProductInfo) -> float:
    rating_a, rating_b = _positive(a.rating), _positive(b.rating)
    if rating_a <= 0 and rating_b <= 0:
        return 0.5
    if rating_a <= 0 or rating_b <= 0:
        return 0.3

    diff = abs(rating_a - rating_b)
    if diff <= 0.2:
        return 1.0
    if diff <= 0.5:
        return 0.8
    if diff <= 1.0:
        return 0.6
    if diff <= 1.5:
        return 0.4
    if diff <= 2.0:
        return 0.2
    return 0.0


def text_similarity(text_a: Optional[str], text_b: Optional[str]) -> float:
    """Blend of word Jaccard (0.7), containment (0.2) and length ratio (0.1)."""
    str_a, str_b = _norm(text_a), _norm(text_b)
    if not str_a or not str_b:
        return 0.0
    if str_a == str_b:
        return 1.0

    words_a = {w for w in _WORD_RE.split(str_a) if len(w) > 2}
    words_b = {w for w in _WORD_RE.split(str_b) if len(w) > 2}
    if not words_a and not words_b:
        return 1.0
    if not words_a or not words_b:
        return 0.0

    jaccard = len(words_a & words_b) / len(words_a | words_b)
    containment = 0.3 if (str_a in str_b or str_b in str_a) else 0.0
    length_ratio = min(len(str_a), len(str_b)) / max(len(str_a), len(str_b))

    combined = jaccard * 0.7 + containment * 0.2 + length_ratio * 0.1
    return max(0.0, min(1.0, combined))


def score(a: Optional[ProductInfo], b: Optional[ProductInfo]) -> float:
    """Similarity of two products in [0, 1]. A product compared with itself scores 0."""
    if a is None or b is None:
        return 0.0
    if a.id and b.id and str(a.id) == str(b.id):
        return 0.0

    total = (
        category_similarity(a, b) * CATEGORY_WEIGHT
        + brand_similarity(a, b) * BRAND_WEIGHT
        + price_similarity(a, b) * PRICE_WEIGHT
        + rating_similarity(a, b) * RATING_WEIGHT
    )
    total_weight = CATEGORY_WEIGHT + BRAND_WEIGHT + PRICE_WEIGHT + RATING_WEIGHT
    final = total / total_weight

    if final > 0.8:
        logger.debug("High similarity %.3f between %r and %r", final, a.name, b.name)
    return max(0.0, min(1.0, final))
