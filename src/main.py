"""FastAPI application entry point for txn-sentinel."""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.middleware.error_handler import global_exception_handler
from src.api.middleware.logging import StructuredLoggingMiddleware
from src.api.routes.analytics import router as analytics_router
from src.api.routes.anomalies import router as anomalies_router
from src.api.routes.health import router as health_router
from src.config import settings
from src.domains.fraud.config import FraudConfig
from src.domains.fraud.errors import FraudPipelineError
from src.domains.fraud.pipeline import build_pipeline
from src.shared.logging import setup_logging

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: start both subscriptions, drain them on shutdown."""
    global APP_START_TIME
    APP_START_TIME = time.time()
    setup_logging(settings.log_level)

    logger.info(
        "sentinel_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        store_backend=settings.store_backend,
        debug=settings.debug,
    )

    pipeline = await build_pipeline(settings, FraudConfig.from_env())
    await pipeline.start()
    app.state.pipeline = pipeline

    yield

    app.state.pipeline = None
    await pipeline.stop()
    logger.info("sentinel_shutting_down")


app = FastAPI(
    title="txn-sentinel",
    description="Near-real-time transaction anomaly detection and live fraud feed",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Structured logging middleware
app.add_middleware(StructuredLoggingMiddleware)

# Known failures are answered directly; anything else falls through to the 500 handler
app.add_exception_handler(ValueError, global_exception_handler)
app.add_exception_handler(FraudPipelineError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Register routers
app.include_router(health_router)
app.include_router(anomalies_router)
app.include_router(analytics_router)


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("src.main:app", host=settings.host, port=settings.port)
