"""
Browsing history endpoints: view tracking plus per-user, per-session and
per-product reads over the recorded views.
"""
from datetime import datetime, timedelta
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from storefront.core.deps import get_behavior_log, get_optional_subject, get_recommendation_service
from storefront.repositories.behavior_log import (
    HistoryEntryNotFoundError,
    HistoryOwnershipError,
    SqlBehaviorLog,
)
from storefront.schemas.browsing_history import (
    ClearHistoryData,
    EngagementUpdateRequest,
    HistoryPage,
    PopularProductResponse,
    ProductAnalyticsResponse,
    TrackBrowsingRequest,
    ViewEventResponse,
)
from storefront.schemas.common import ApiResponse, Pagination
from storefront.services.recommendation_service import (
    ProductNotFoundError,
    RecommendationService,
    TrackingError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/browsing-history", tags=["browsing-history"])


def _ensure_same_user(caller: Optional[str], user_id: str) -> None:
    if caller and caller != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized access")


@router.post("/track", response_model=ApiResponse[ViewEventResponse], status_code=status.HTTP_201_CREATED)
async def track_browsing_history(
    payload: TrackBrowsingRequest,
    request: Request,
    subject_id: Optional[str] = Depends(get_optional_subject),
    service: RecommendationService = Depends(get_recommendation_service),
):
    subject_id = subject_id or payload.user_id or None
    metadata = payload.to_domain()
    if metadata.device_info is None:
        metadata.device_info = request.headers.get("user-agent") or None

    try:
        event = await service.track_browsing_history(subject_id, payload.product_id, payload.session_id, metadata)
    except ProductNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    except TrackingError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return ApiResponse(message="Browsing history tracked successfully", data=ViewEventResponse.from_event(event))


@router.get("/user/{user_id}", response_model=ApiResponse[HistoryPage])
async def get_user_browsing_history(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    days: int = Query(30, ge=1),
    caller: Optional[str] = Depends(get_optional_subject),
    behavior_log: SqlBehaviorLog = Depends(get_behavior_log),
):
    _ensure_same_user(caller, user_id)
    logger.info("Retrieving browsing history for user: %s, days: %d", user_id, days)

    since = datetime.utcnow() - timedelta(days=days)
    events = await behavior_log.list_for_subject(user_id, since=since, offset=(page - 1) * limit, limit=limit)
    total = await behavior_log.count_for_subject(user_id, since=since)

    return ApiResponse(
        message="User browsing history retrieved successfully",
        data=HistoryPage(
            history=[ViewEventResponse.from_event(e) for e in events],
            pagination=Pagination.build(total, page, limit),
        ),
    )


@router.get("/session/{session_id}", response_model=ApiResponse[List[ViewEventResponse]])
async def get_session_browsing_history(
    session_id: str,
    limit: int = Query(50, ge=1, le=200),
    behavior_log: SqlBehaviorLog = Depends(get_behavior_log),
):
    events = await behavior_log.list_for_session(session_id, limit)
    return ApiResponse(
        message="Session browsing history retrieved successfully",
        data=[ViewEventResponse.from_event(e) for e in events],
    )


@router.get("/popular-products", response_model=ApiResponse[List[PopularProductResponse]])
async def get_popular_products(
    limit: int = Query(10, ge=1, le=100),
    days: int = Query(7, ge=1),
    category: Optional[str] = None,
    behavior_log: SqlBehaviorLog = Depends(get_behavior_log),
):
    since = datetime.utcnow() - timedelta(days=days)
    stats = await behavior_log.popular_products(since, limit, category)
    return ApiResponse(
        message="Popular products retrieved successfully",
        data=[PopularProductResponse.from_stat(s) for s in stats],
    )


@router.get("/product/{product_id}/analytics", response_model=ApiResponse[ProductAnalyticsResponse])
async def get_product_analytics(
    product_id: str,
    days: int = Query(30, ge=1),
    behavior_log: SqlBehaviorLog = Depends(get_behavior_log),
):
    end = datetime.utcnow()
    start = end - timedelta(days=days)
    logger.info("Generating analytics for product: %s, days: %d", product_id, days)
    analytics = await behavior_log.product_analytics(product_id, start)
    return ApiResponse(
        message="Product analytics retrieved successfully",
        data=ProductAnalyticsResponse.from_analytics(analytics, days, start, end),
    )


@router.delete("/user/{user_id}/clear", response_model=ApiResponse[ClearHistoryData])
async def clear_user_history(
    user_id: str,
    older_than_days: Optional[int] = Query(None, alias="olderThanDays", ge=0),
    caller: Optional[str] = Depends(get_optional_subject),
    behavior_log: SqlBehaviorLog = Depends(get_behavior_log),
):
    _ensure_same_user(caller, user_id)

    now = datetime.utcnow()
    older_than = now - timedelta(days=older_than_days) if older_than_days is not None else None
    deleted = await behavior_log.clear_subject(user_id, older_than)
    logger.info("Cleared %d browsing history entries for user %s", deleted, user_id)

    return ApiResponse(
        message=f"Successfully cleared {deleted} browsing history entries",
        data=ClearHistoryData(deleted_count=deleted, user_id=user_id, cleared_at=now),
    )


@router.put("/{history_id}/update-engagement", response_model=ApiResponse[ViewEventResponse])
async def update_engagement_metrics(
    history_id: str,
    payload: EngagementUpdateRequest,
    caller: Optional[str] = Depends(get_optional_subject),
    behavior_log: SqlBehaviorLog = Depends(get_behavior_log),
):
    try:
        event = await behavior_log.update_engagement(
            history_id,
            subject_id=caller or payload.user_id,
            time_spent=payload.time_spent,
            scroll_depth=payload.scroll_depth,
            added_to_wishlist=payload.added_to_wishlist,
            added_to_bag=payload.added_to_bag,
        )
    except HistoryEntryNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Browsing history entry not found")
    except HistoryOwnershipError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized access")

    return ApiResponse(message="Engagement metrics updated successfully", data=ViewEventResponse.from_event(event))
