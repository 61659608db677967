"""
Domain types shared by the recommendation engine, its repositories and the HTTP layer.

These are plain dataclasses so the engine never depends on the ORM; repositories
translate rows into them.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
import enum


class Reason(str, enum.Enum):
    """Why a product was proposed. Values are persisted in the cache table."""
    COLLABORATIVE_FILTERING = "collaborative_filtering"
    CONTENT_SIMILARITY = "content_similarity"
    USER_BEHAVIOR = "user_behavior"
    WISHLIST_PATTERN = "wishlist_pattern"
    POPULARITY = "popularity"
    FALLBACK = "fallback"

    @property
    def label(self) -> str:
        return REASON_LABELS[self]


REASON_LABELS = {
    Reason.COLLABORATIVE_FILTERING: "Shoppers who viewed this also viewed",
    Reason.CONTENT_SIMILARITY: "Similar to this product",
    Reason.USER_BEHAVIOR: "Based on your browsing",
    Reason.WISHLIST_PATTERN: "Inspired by your wishlist",
    Reason.POPULARITY: "Popular right now",
    Reason.FALLBACK: "More from this category",
}


class ViewSource(str, enum.Enum):
    DIRECT = "direct"
    SEARCH = "search"
    CATEGORY = "category"
    RECOMMENDATION = "recommendation"
    PRODUCT_DETAIL = "product_detail"
    PRODUCT_DETAIL_EXTENDED = "product_detail_extended"
    PRODUCT_DETAIL_SCROLL = "product_detail_scroll"
    RECOMMENDATION_CAROUSEL = "recommendation_carousel"
    RECOMMENDATION_CLICK = "recommendation_click"
    WISHLIST_ACTION = "wishlist_action"
    BAG_ACTION = "bag_action"
    SHARE_ACTION = "share_action"
    RELATED_PRODUCT_CLICK = "related_product_click"
    HOMEPAGE = "homepage"
    BANNER = "banner"
    PROMOTION = "promotion"
    EXTERNAL = "external"


class RecommendationAlgorithm(str, enum.Enum):
    HYBRID = "hybrid"
    GENERIC = "generic"


@dataclass(frozen=True)
class ProductInfo:
    id: str
    name: str = ""
    brand: Optional[str] = None
    price: Optional[float] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    popularity: Optional[float] = None
    is_active: bool = True
    colors: Tuple[str, ...] = ()
    sizes: Tuple[str, ...] = ()


@dataclass
class Candidate:
    product: ProductInfo
    score: float
    reason: Reason
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FusedRecommendation:
    product: ProductInfo
    total_score: float
    reasons: List[Reason] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProductFilter:
    """
    Catalog query. Category and brand constraints are ANDed unless match_any is set,
    in which case a product matching either list qualifies.
    """
    categories: Optional[Sequence[str]] = None
    brands: Optional[Sequence[str]] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    exclude_id: Optional[str] = None
    match_any: bool = False


@dataclass(frozen=True)
class ViewerStat:
    subject_id: str
    view_count: int
    last_viewed: datetime


@dataclass(frozen=True)
class ProductViewStats:
    product_id: str
    unique_viewers: int
    total_views: int
    avg_time_spent: Optional[float]
    wishlist_adds: int
    bag_adds: int


@dataclass(frozen=True)
class HistoryEntry:
    """A past view with the viewed product resolved (None if it no longer exists)."""
    product_id: str
    viewed_at: datetime
    product: Optional[ProductInfo] = None


@dataclass(frozen=True)
class WishlistEntry:
    product_id: str
    product: Optional[ProductInfo] = None


@dataclass
class ViewEvent:
    id: str
    subject_id: Optional[str]
    product_id: str
    session_id: str
    viewed_at: datetime
    time_spent: float = 0.0
    scroll_depth: float = 0.0
    source: str = ViewSource.DIRECT.value
    device_info: str = ""
    added_to_wishlist: bool = False
    added_to_bag: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    product: Optional[ProductInfo] = None


@dataclass
class ViewMetadata:
    """An incoming observation of a view. None means the caller did not report the field."""
    time_spent: Optional[float] = None
    scroll_depth: Optional[float] = None
    source: Optional[str] = None
    device_info: Optional[str] = None
    added_to_wishlist: Optional[bool] = None
    added_to_bag: Optional[bool] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def normalized(self) -> "ViewMetadata":
        """Clamp numeric fields into their valid ranges."""
        time_spent = self.time_spent
        if time_spent is not None:
            time_spent = max(float(time_spent), 0.0)
        scroll_depth = self.scroll_depth
        if scroll_depth is not None:
            scroll_depth = min(max(float(scroll_depth), 0.0), 100.0)
        return ViewMetadata(
            time_spent=time_spent,
            scroll_depth=scroll_depth,
            source=self.source or None,
            device_info=self.device_info or None,
            added_to_wishlist=self.added_to_wishlist,
            added_to_bag=self.added_to_bag,
            extra=dict(self.extra or {}),
        )


def merge_view(existing: ViewEvent, incoming: ViewMetadata, now: datetime) -> ViewEvent:
    """
    Fold a repeat observation into the live event for the same (subject, product, session).

    Time spent and scroll depth keep the maximum, the action flags are ORed, source and
    device are overwritten only when the caller reported them, and viewed_at moves to now.
    """
    incoming = incoming.normalized()
    merged_extra = dict(existing.metadata or {})
    merged_extra.update(incoming.extra)
    return ViewEvent(
        id=existing.id,
        subject_id=existing.subject_id,
        product_id=existing.product_id,
        session_id=existing.session_id,
        viewed_at=now,
        time_spent=max(existing.time_spent or 0.0, incoming.time_spent or 0.0),
        scroll_depth=max(existing.scroll_depth or 0.0, incoming.scroll_depth or 0.0),
        source=incoming.source or existing.source,
        device_info=incoming.device_info or existing.device_info,
        added_to_wishlist=bool(existing.added_to_wishlist or incoming.added_to_wishlist),
        added_to_bag=bool(existing.added_to_bag or incoming.added_to_bag),
        metadata=merged_extra,
        product=existing.product,
    )


def engagement_score(event: ViewEvent) -> int:
    """0-100 engagement: time (up to 40), scroll depth (up to 30), wishlist and bag (15 each)."""
    score = 0.0
    if event.time_spent > 0:
        score += min(event.time_spent / 60, 40)
    if event.scroll_depth > 0:
        score += (event.scroll_depth / 100) * 30
    if event.added_to_wishlist:
        score += 15
    if event.added_to_bag:
        score += 15
    return round(score)


@dataclass(frozen=True)
class PopularProduct:
    product_id: str
    view_count: int
    unique_users: int
    unique_sessions: int
    avg_time_spent: float
    avg_scroll_depth: float
    wishlist_adds: int
    bag_adds: int
    popularity_score: float
    product: Optional[ProductInfo] = None


@dataclass(frozen=True)
class DailyTrend:
    date: str
    views: int
    unique_users: int
    unique_sessions: int


@dataclass
class ProductAnalytics:
    product_id: str
    total_views: int = 0
    unique_users: int = 0
    unique_sessions: int = 0
    avg_time_spent: float = 0.0
    avg_scroll_depth: float = 0.0
    wishlist_adds: int = 0
    bag_adds: int = 0
    daily_trends: List[DailyTrend] = field(default_factory=list)

    @property
    def conversion_rate(self) -> float:
        return self.bag_adds / max(self.total_views, 1) * 100

    @property
    def wishlist_rate(self) -> float:
        return self.wishlist_adds / max(self.total_views, 1) * 100


def popularity_score(view_count: int, unique_users: int, wishlist_adds: int, bag_adds: int) -> float:
    return view_count + 2 * unique_users + 3 * wishlist_adds + 5 * bag_adds
