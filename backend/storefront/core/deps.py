"""
Request dependencies and service wiring.

Identity is not authenticated here: the caller's user id, when present, comes
from the X-User-Id header or the userId query parameter. Routes that take a
JSON body fall back to its userId field themselves.
"""
from typing import Optional

from fastapi import Header, Query, Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from storefront.core.config import RecommendationConfig
from storefront.repositories.affinity import SqlAffinityStore
from storefront.repositories.behavior_log import SqlBehaviorLog
from storefront.repositories.cache_store import SqlCacheStore
from storefront.repositories.catalog import SqlCatalog
from storefront.services.cache import RecommendationCache
from storefront.services.recommendation_service import RecommendationService


def get_optional_subject(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    query_user_id: Optional[str] = Query(None, alias="userId"),
) -> Optional[str]:
    """Optional user dependency - returns None for anonymous callers."""
    # not named user_id: routes with a {user_id} path segment also depend on this
    for candidate in (x_user_id, query_user_id):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


def get_recommendation_service(request: Request) -> RecommendationService:
    return request.app.state.recommendation_service


def get_behavior_log(request: Request) -> SqlBehaviorLog:
    return request.app.state.behavior_log


def build_recommendation_service(
    session_factory: async_sessionmaker, config: RecommendationConfig
) -> RecommendationService:
    catalog = SqlCatalog(session_factory)
    return RecommendationService(
        catalog=catalog,
        behavior_log=SqlBehaviorLog(session_factory),
        affinity_store=SqlAffinityStore(session_factory),
        cache=RecommendationCache(SqlCacheStore(session_factory), catalog, ttl=config.cache_ttl),
        config=config,
    )
