from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os
from datetime import datetime

from storefront.core.config import RecommendationConfig, settings
from storefront.core.deps import build_recommendation_service
from storefront.database import SessionLocal, init_db
from storefront.routers import browsing_history, recommendations
from storefront import scheduler

# ----------------------------
# Logging
# ----------------------------
logger = logging.getLogger("storefront")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Server fingerprint for debugging
SERVER_BOOT_ID = f"storefront-recs::{os.getpid()}::{datetime.utcnow().isoformat()}"

app = FastAPI(debug=settings.DEBUG)


# ----------------------------
# CORS
# ----------------------------
cors_origins = settings.cors_origins_list
logger.info("[CORS] allow_origins=%s", cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("[UNHANDLED] %s %s", request.method, request.url.path)

    response = JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error"}
    )

    # Ensure CORS headers are present in error responses
    origin = request.headers.get("origin")
    if origin and origin in cors_origins:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = "*"
        response.headers["Access-Control-Allow-Headers"] = "*"

    return response


# ----------------------------
# Routers
# ----------------------------
app.include_router(recommendations.router, prefix="/api")
app.include_router(browsing_history.router, prefix="/api")


@app.on_event("startup")
async def on_startup() -> None:
    logger.info("[BOOT] %s", SERVER_BOOT_ID)
    await init_db()

    config = RecommendationConfig.from_settings(settings)
    service = build_recommendation_service(SessionLocal, config)
    app.state.recommendation_service = service
    app.state.behavior_log = service.behavior_log

    if settings.MAINTENANCE_ENABLED:
        scheduler.start_scheduler(service, service.behavior_log)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    scheduler.stop_scheduler()


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/api/health")
def api_health_check():
    return {"status": "ok"}
