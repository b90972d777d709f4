"""Health and readiness endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from order_risk.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    from order_risk.main import get_uptime

    return {
        "status": "healthy",
        "version": settings.app_version,
        "uptime_seconds": get_uptime(),
    }


@router.get("/ready")
async def ready(request: Request) -> JSONResponse:
    engine_ok = getattr(request.app.state, "fraud_engine", None) is not None
    kafka_ok = getattr(request.app.state, "kafka_producer", None) is not None

    db_ok = True
    if settings.storage_backend == "sql":
        from order_risk.db.database import check_db

        db_ok = await check_db()

    all_ready = engine_ok and db_ok
    return JSONResponse(
        status_code=200 if all_ready else 503,
        content={
            "status": "ready" if all_ready else "degraded",
            "engine": engine_ok,
            "database": db_ok,
            "kafka": kafka_ok,
            "storage_backend": settings.storage_backend,
        },
    )
