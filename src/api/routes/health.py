"""Health and readiness endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from src.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    from src.main import get_uptime

    return {
        "status": "healthy",
        "version": settings.app_version,
        "uptime_seconds": get_uptime(),
    }


@router.get("/ready")
async def ready(request: Request) -> JSONResponse:
    pipeline_ok = getattr(request.app.state, "pipeline", None) is not None
    db_ok = True

    if settings.store_backend == "sql":
        from src.db.database import check_db

        db_ok = await check_db()

    all_ready = pipeline_ok and db_ok
    return JSONResponse(
        status_code=200 if all_ready else 503,
        content={
            "status": "ready" if all_ready else "not_ready",
            "checks": {"pipeline": pipeline_ok, "database": db_ok},
        },
    )
