from datetime import datetime
from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from storefront.core.config import settings
from storefront.core.deps import get_behavior_log, get_optional_subject, get_recommendation_service
from storefront.repositories.behavior_log import SqlBehaviorLog
from storefront.schemas.browsing_history import (
    HistoryPage,
    TrackViewRequest,
    ViewEventResponse,
)
from storefront.schemas.common import ApiResponse, Pagination
from storefront.schemas.recommendation import (
    ClearCacheData,
    RecommendationItem,
    RecommendationMeta,
    RecommendationsData,
)
from storefront.services.recommendation_service import (
    ProductNotFoundError,
    RecommendationService,
    TrackingError,
)
from storefront.utils.timing import time_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recommendations", tags=["recommendations"])


@router.get("/product/{product_id}", response_model=ApiResponse[RecommendationsData])
async def get_product_recommendations(
    product_id: str,
    limit: Optional[int] = Query(None, ge=1),
    subject_id: Optional[str] = Depends(get_optional_subject),
    service: RecommendationService = Depends(get_recommendation_service),
):
    logger.info("Getting recommendations for product: %s, user: %s", product_id, subject_id or "anonymous")

    log_fn = logger.info if settings.DEBUG else logger.debug
    try:
        with time_operation(f"recommendations product={product_id} user={subject_id or 'anonymous'}", log_fn):
            recommendations = await service.generate_recommendations(product_id, subject_id, limit)
    except ProductNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")

    return ApiResponse(
        message="Recommendations generated successfully",
        data=RecommendationsData(
            recommendations=[RecommendationItem.from_recommendation(rec) for rec in recommendations],
            meta=RecommendationMeta(
                count=len(recommendations),
                user_id=subject_id or "anonymous",
                timestamp=datetime.utcnow(),
                algorithm="personalized" if subject_id else "generic",
            ),
        ),
    )


@router.post(
    "/track-view",
    response_model=ApiResponse[ViewEventResponse],
    status_code=status.HTTP_201_CREATED,
)
async def track_product_view(
    payload: TrackViewRequest,
    request: Request,
    subject_id: Optional[str] = Depends(get_optional_subject),
    service: RecommendationService = Depends(get_recommendation_service),
):
    subject_id = subject_id or payload.user_id or None
    metadata = payload.metadata.to_domain(
        userAgent=request.headers.get("user-agent"),
        platform=request.headers.get("x-platform", "web"),
    )
    if metadata.device_info is None:
        metadata.device_info = request.headers.get("user-agent") or None

    try:
        event = await service.track_browsing_history(subject_id, payload.product_id, payload.session_id, metadata)
    except ProductNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    except TrackingError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return ApiResponse(
        message="Product view tracked successfully" if subject_id else "Anonymous view tracked successfully",
        data=ViewEventResponse.from_event(event),
    )


@router.get("/user-history", response_model=ApiResponse[HistoryPage])
async def get_user_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    subject_id: Optional[str] = Depends(get_optional_subject),
    behavior_log: SqlBehaviorLog = Depends(get_behavior_log),
):
    if not subject_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User ID is required")

    offset = (page - 1) * limit
    events = await behavior_log.list_for_subject(subject_id, since=None, offset=offset, limit=limit)
    total = await behavior_log.count_for_subject(subject_id, since=None)

    return ApiResponse(
        message="User browsing history retrieved successfully",
        data=HistoryPage(
            history=[ViewEventResponse.from_event(e) for e in events],
            pagination=Pagination.build(total, page, limit),
        ),
    )


@router.delete("/clear-cache/{product_id}", response_model=ApiResponse[ClearCacheData])
async def clear_recommendation_cache(
    product_id: str,
    subject_id: Optional[str] = Depends(get_optional_subject),
    service: RecommendationService = Depends(get_recommendation_service),
):
    deleted = await service.invalidate_cache(product_id, subject_id)
    return ApiResponse(
        message=f"Recommendation cache cleared ({deleted} entries removed)",
        data=ClearCacheData(deleted_count=deleted, product_id=product_id, user_id=subject_id or "anonymous"),
    )

