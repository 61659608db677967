"""Request/response models for view tracking and browsing-history analytics."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field

from storefront.schemas.common import CamelModel, Pagination
from storefront.schemas.product import ProductSummary
from storefront.services.domain import (
    PopularProduct,
    ProductAnalytics,
    ViewEvent,
    ViewMetadata,
    engagement_score,
)


class ViewMetadataPayload(CamelModel):
    """
    Engagement observed by the client. Unknown keys are kept and stored in the
    event's free-form metadata map.
    """
    model_config = ConfigDict(extra="allow")

    time_spent: Optional[float] = None
    scroll_depth: Optional[float] = None
    source: Optional[str] = None
    device_info: Optional[str] = None
    added_to_wishlist: Optional[bool] = None
    added_to_bag: Optional[bool] = None

    def to_domain(self, **extra: Any) -> ViewMetadata:
        merged = dict(self.model_extra or {})
        merged.update({k: v for k, v in extra.items() if v is not None})
        return ViewMetadata(
            time_spent=self.time_spent,
            scroll_depth=self.scroll_depth,
            source=self.source,
            device_info=self.device_info,
            added_to_wishlist=self.added_to_wishlist,
            added_to_bag=self.added_to_bag,
            extra=merged,
        )


class TrackViewRequest(CamelModel):
    """POST /recommendations/track-view: engagement nested under metadata."""
    product_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    metadata: ViewMetadataPayload = Field(default_factory=ViewMetadataPayload)


class TrackBrowsingRequest(CamelModel):
    """POST /browsing-history/track: engagement fields inline."""
    product_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    time_spent: Optional[float] = None
    scroll_depth: Optional[float] = None
    source: Optional[str] = None
    device_info: Optional[str] = None
    added_to_wishlist: Optional[bool] = None
    added_to_bag: Optional[bool] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_domain(self) -> ViewMetadata:
        return ViewMetadata(
            time_spent=self.time_spent,
            scroll_depth=self.scroll_depth,
            source=self.source,
            device_info=self.device_info,
            added_to_wishlist=self.added_to_wishlist,
            added_to_bag=self.added_to_bag,
            extra=dict(self.metadata),
        )


class EngagementUpdateRequest(CamelModel):
    user_id: Optional[str] = None
    time_spent: Optional[float] = None
    scroll_depth: Optional[float] = None
    added_to_wishlist: Optional[bool] = None
    added_to_bag: Optional[bool] = None


class ViewEventResponse(CamelModel):
    id: str
    user_id: Optional[str] = None
    product_id: str
    session_id: str
    viewed_at: datetime
    time_spent: float
    scroll_depth: float
    source: str
    device_info: str
    added_to_wishlist: bool
    added_to_bag: bool
    metadata: Dict[str, Any] = {}
    engagement_score: int
    product: Optional[ProductSummary] = None

    @classmethod
    def from_event(cls, event: ViewEvent) -> "ViewEventResponse":
        return cls(
            id=event.id,
            user_id=event.subject_id,
            product_id=event.product_id,
            session_id=event.session_id,
            viewed_at=event.viewed_at,
            time_spent=event.time_spent,
            scroll_depth=event.scroll_depth,
            source=event.source,
            device_info=event.device_info,
            added_to_wishlist=event.added_to_wishlist,
            added_to_bag=event.added_to_bag,
            metadata=dict(event.metadata or {}),
            engagement_score=engagement_score(event),
            product=ProductSummary.from_info(event.product) if event.product else None,
        )


class HistoryPage(CamelModel):
    history: List[ViewEventResponse]
    pagination: Pagination


class PopularProductResponse(CamelModel):
    product_id: str
    view_count: int
    unique_user_count: int
    unique_session_count: int
    avg_time_spent: float
    avg_scroll_depth: float
    wishlist_adds: int
    bag_adds: int
    popularity_score: float
    product: Optional[ProductSummary] = None

    @classmethod
    def from_stat(cls, stat: PopularProduct) -> "PopularProductResponse":
        return cls(
            product_id=stat.product_id,
            view_count=stat.view_count,
            unique_user_count=stat.unique_users,
            unique_session_count=stat.unique_sessions,
            avg_time_spent=stat.avg_time_spent,
            avg_scroll_depth=stat.avg_scroll_depth,
            wishlist_adds=stat.wishlist_adds,
            bag_adds=stat.bag_adds,
            popularity_score=stat.popularity_score,
            product=ProductSummary.from_info(stat.product) if stat.product else None,
        )


class AnalyticsTotals(CamelModel):
    total_views: int
    unique_user_count: int
    unique_session_count: int
    avg_time_spent: float
    avg_scroll_depth: float
    wishlist_adds: int
    bag_adds: int
    conversion_rate: float
    wishlist_rate: float


class DailyTrendResponse(CamelModel):
    date: str
    views: int
    unique_user_count: int
    unique_session_count: int


class AnalyticsPeriod(CamelModel):
    days: int
    start_date: datetime
    end_date: datetime


class ProductAnalyticsResponse(CamelModel):
    analytics: AnalyticsTotals
    daily_trends: List[DailyTrendResponse]
    period: AnalyticsPeriod

    @classmethod
    def from_analytics(cls, a: ProductAnalytics, days: int, start: datetime, end: datetime) -> "ProductAnalyticsResponse":
        return cls(
            analytics=AnalyticsTotals(
                total_views=a.total_views,
                unique_user_count=a.unique_users,
                unique_session_count=a.unique_sessions,
                avg_time_spent=a.avg_time_spent,
                avg_scroll_depth=a.avg_scroll_depth,
                wishlist_adds=a.wishlist_adds,
                bag_adds=a.bag_adds,
                conversion_rate=round(a.conversion_rate, 2),
                wishlist_rate=round(a.wishlist_rate, 2),
            ),
            daily_trends=[
                DailyTrendResponse(
                    date=t.date,
                    views=t.views,
                    unique_user_count=t.unique_users,
                    unique_session_count=t.unique_sessions,
                )
                for t in a.daily_trends
            ],
            period=AnalyticsPeriod(days=days, start_date=start, end_date=end),
        )


class ClearHistoryData(CamelModel):
    deleted_count: int
    user_id: str
    cleared_at: datetime
