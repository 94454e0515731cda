import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load env from the project root .env
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

# Import after dotenv is loaded
from liftrank.core.config import settings, validate_config
from liftrank.core.logging import configure_logging
from liftrank.core.middleware.request_id import RequestIdMiddleware
from liftrank.core.middleware.metrics import MetricsMiddleware
from liftrank.core.middleware.ratelimit import RateLimitMiddleware
from liftrank.core.ratelimit import build_rate_limit_config
from liftrank.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from liftrank.api import admin, health, leaderboard, metrics, realtime, user_metrics
from liftrank.features.ranking.scheduler import RecalculationScheduler
from liftrank.features.ranking.service import get_ranking_service

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("liftrank")
    logger.info("Starting LiftRank ranking service...")
    service = get_ranking_service()
    restored = service.restore()
    logger.info(f"Restored {restored} leaderboard snapshots (policy={service.policy})")

    scheduler = None
    if settings.RECALC_INTERVAL_SECONDS > 0:
        scheduler = RecalculationScheduler(service, settings.RECALC_INTERVAL_SECONDS)
    elif settings.DATABASE_URL and settings.SNAPSHOT_REFRESH_SECONDS > 0:
        # Only forwards snapshots the queue worker publishes
        scheduler = RecalculationScheduler(service, settings.SNAPSHOT_REFRESH_SECONDS, recalculate=False)
    if scheduler is not None:
        scheduler.start()
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            await scheduler.stop()
        logging.getLogger("liftrank").info("Stopping LiftRank ranking service...")


app = FastAPI(title="LiftRank - Ranking Service", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(RateLimitMiddleware, config=build_rate_limit_config(settings))
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(leaderboard.router, tags=["leaderboard"])
app.include_router(user_metrics.router, tags=["metrics"])
app.include_router(admin.router, tags=["admin"])
app.include_router(realtime.router, tags=["realtime"])
app.include_router(health.root_router, tags=["health"])
app.include_router(metrics.router, tags=["metrics"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("liftrank.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=False)
