"""
Health check endpoints
"""

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from config.settings import settings
from src.api.dependencies import get_job_queue
from src.services.job_queue import JobQueue

router = APIRouter()
logger = structlog.get_logger()


@router.get("")
async def health_check() -> JSONResponse:
    """
    Health check endpoint for monitoring
    """
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": "1.0.0",
            "service": "pr-review-bot",
            "port": settings.PORT,
        },
        status_code=200,
    )


@router.get("/ready")
async def readiness_check(job_queue: JobQueue = Depends(get_job_queue)) -> JSONResponse:
    """
    Readiness check: the queue broker must be reachable
    """
    checks = {
        "queue_broker": await job_queue.ping(),
        "bot_username": bool(settings.BOT_USERNAME),
    }
    ready = checks["queue_broker"]

    if not ready:
        logger.warning("Readiness check failed", checks=checks)

    return JSONResponse(
        content={
            "ready": ready,
            "checks": checks,
            "draining_in_process": job_queue.is_draining,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        status_code=200 if ready else 503,
    )
