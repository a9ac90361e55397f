"""
Job inspection endpoints for operators
"""

from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from src.api.dependencies import get_job_queue
from src.models.jobs import Job, JobStatus
from src.services.errors import BrokerError
from src.services.job_queue import JobQueue

router = APIRouter()
logger = structlog.get_logger()


@router.get("/stats")
async def get_queue_stats(job_queue: JobQueue = Depends(get_job_queue)) -> JSONResponse:
    """
    Get job counts per status
    """
    try:
        counts = await job_queue.counts()
    except BrokerError as e:
        logger.error("Failed to get queue stats", error=e.message)
        raise HTTPException(status_code=503, detail="Job queue unavailable")

    return JSONResponse(content={"queue": job_queue.queue_name, "counts": counts})


@router.get("", response_model=List[Job])
async def list_jobs(
    status: Optional[JobStatus] = Query(None, description="Filter by job status"),
    limit: int = Query(
        50, ge=1, le=100, description="Maximum number of jobs to return"
    ),
    offset: int = Query(0, ge=0, description="Number of jobs to skip"),
    job_queue: JobQueue = Depends(get_job_queue),
) -> List[Job]:
    """
    List jobs with optional filtering
    """
    try:
        return await job_queue.list_jobs(status=status, limit=limit, offset=offset)
    except BrokerError as e:
        logger.error("Failed to list jobs", error=e.message)
        raise HTTPException(status_code=503, detail="Job queue unavailable")


@router.get("/{job_id}", response_model=Job)
async def get_job(job_id: str, job_queue: JobQueue = Depends(get_job_queue)) -> Job:
    """
    Get a specific job
    """
    try:
        job = await job_queue.get_job(job_id)
    except BrokerError as e:
        logger.error("Failed to get job", job_id=job_id, error=e.message)
        raise HTTPException(status_code=503, detail="Job queue unavailable")

    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job
