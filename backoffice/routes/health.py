# backoffice/routes/health.py
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict

import psutil
from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.config import settings
from backoffice.core.logging import get_structlog_logger
from backoffice.db.session import get_session

logger = get_structlog_logger(__name__)

router = APIRouter(tags=["health"])


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    environment: str
    timestamp: str
    uptime: float
    checks: Dict[str, Dict[str, Any]]


async def check_database(session: AsyncSession) -> Dict[str, Any]:
    """Check database connectivity."""
    started = time.perf_counter()
    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("health.database_failed", error=str(e))
        return {"status": "unhealthy", "error": str(e) if settings.is_development else "unavailable"}
    return {
        "status": "healthy",
        "dialect": session.bind.dialect.name,
        "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
    }


def check_postback_queue(request: Request) -> Dict[str, Any]:
    queue = getattr(request.app.state, "postback_queue", None)
    if queue is None:
        return {"status": "unavailable"}
    return {"status": "healthy" if queue.running else "stopped", "depth": queue.depth()}


@router.get("/health", response_model=HealthCheckResponse, status_code=status.HTTP_200_OK)
async def health_check(
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Liveness plus database and postback queue checks."""
    checks = {
        "database": await check_database(session),
        "postbackQueue": check_postback_queue(request),
    }

    overall = "healthy"
    if checks["database"]["status"] != "healthy":
        overall = "unhealthy"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif checks["postbackQueue"]["status"] != "healthy":
        overall = "degraded"

    process = psutil.Process()
    result = HealthCheckResponse(
        status=overall,
        service="backoffice_api",
        environment=settings.environment,
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime=time.time() - process.create_time(),
        checks=checks,
    )

    if overall != "healthy":
        logger.warning("health.check", status=overall, checks=checks)
    return result
