from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cohort_engine.api.assignments import router as assignments_router
from cohort_engine.api.cohorts import router as cohorts_router
from cohort_engine.api.error_handlers import install_error_handlers
from cohort_engine.api.health import router as health_router
from cohort_engine.api.leaderboard import router as leaderboard_router
from cohort_engine.api.lessons import router as lessons_router
from cohort_engine.api.live_classes import router as live_classes_router
from cohort_engine.api.metrics_endpoint import router as metrics_router
from cohort_engine.api.quizzes import router as quizzes_router
from cohort_engine.api.topics import router as topics_router
from cohort_engine.api.weeks import router as weeks_router
from cohort_engine.core.config import SETTINGS
from cohort_engine.core.logging import setup_logging
from cohort_engine.db.engine import lifespan_db
from cohort_engine.db.redis import lifespan_redis
from cohort_engine.middleware.metrics import MetricsMiddleware
from cohort_engine.middleware.request_context import (
    RequestContextFilter,
    RequestContextMiddleware,
)

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestContextFilter())

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order (LIFO)
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="cohort-progress-engine",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware execution order: last-added runs first (outermost layer).
# RequestContext (outermost) → Metrics → CORS → route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

install_error_handlers(app)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(cohorts_router)
app.include_router(topics_router)
app.include_router(lessons_router)
app.include_router(quizzes_router)
app.include_router(weeks_router)
app.include_router(assignments_router)
app.include_router(live_classes_router)
app.include_router(leaderboard_router)

logger.info(
    "cohort-progress-engine started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
