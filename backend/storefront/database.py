from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from storefront.core.config import settings
import logging
import os
import time
import warnings

logger = logging.getLogger(__name__)

SLOW_QUERY_THRESHOLD_MS = 200.0

Base = declarative_base()


def _install_slow_query_logging(engine: AsyncEngine) -> None:
    """Log statements slower than SLOW_QUERY_THRESHOLD_MS (DEBUG mode only)."""

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def receive_before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        context._query_start_time = time.perf_counter()

    @event.listens_for(engine.sync_engine, "after_cursor_execute")
    def receive_after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        if hasattr(context, "_query_start_time"):
            elapsed_ms = (time.perf_counter() - context._query_start_time) * 1000
            if elapsed_ms >= SLOW_QUERY_THRESHOLD_MS:
                statement_first_line = statement.split("\n")[0].strip()[:100]
                logger.warning(f"SLOW_QUERY: {elapsed_ms:.2f}ms - {statement_first_line}")


def build_engine(database_url: str, debug: bool = False) -> AsyncEngine:
    """Create an async engine; pre-ping only applies to pooled server databases."""
    kwargs = {"echo": False}
    if not database_url.startswith("sqlite"):
        kwargs["pool_pre_ping"] = True
    engine = create_async_engine(database_url, **kwargs)
    if debug:
        _install_slow_query_logging(engine)
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


logger.info("STOREFRONT DATABASE_URL = %s", settings.get_masked_database_url())

engine = build_engine(settings.DATABASE_URL, debug=settings.DEBUG)

SessionLocal = build_session_factory(engine)


async def init_db(bind: AsyncEngine = None) -> None:
    """
    Dev convenience: ensure all storefront tables exist.
    In production, prefer running Alembic migrations instead.

    WARNING: create_all() will NOT add missing columns to existing tables.
    It only creates tables that don't exist. Use Alembic migrations for schema changes.
    """
    alembic_versions_path = os.path.join(os.path.dirname(__file__), "..", "alembic", "versions")
    if bind is None and os.path.exists(alembic_versions_path) and any(
        name.endswith(".py") for name in os.listdir(alembic_versions_path)
    ):
        warnings.warn(
            "Alembic migrations detected. Skipping Base.metadata.create_all(). "
            "Use 'alembic upgrade head' for schema changes.",
            UserWarning,
        )
        return

    # Import all models to ensure they're registered with Base.metadata
    from storefront import models  # noqa: F401

    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
