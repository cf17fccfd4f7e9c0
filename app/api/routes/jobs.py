"""
Job Queue API Routes
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_services
from app.models.api_responses import JobResponse, JobStatsResponse
from app.services.container import Services

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/stats", response_model=JobStatsResponse)
async def job_stats(team_id: str, services: Services = Depends(get_services)):
    return JobStatsResponse(**services.job_queue.stats(team_id))


@router.get("/failed", response_model=List[JobResponse])
async def failed_jobs(
    team_id: str,
    limit: int = Query(100, ge=1, le=500),
    services: Services = Depends(get_services),
):
    jobs = services.job_queue.failed_jobs(team_id, limit)
    return [JobResponse.model_validate(job) for job in jobs]


@router.get("/recent", response_model=List[JobResponse])
async def recent_jobs(
    team_id: str,
    limit: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
):
    jobs = services.job_queue.recent_jobs(team_id, limit)
    return [JobResponse.model_validate(job) for job in jobs]


@router.post("/retry-all")
async def retry_all(team_id: str, services: Services = Depends(get_services)):
    """Move every failed job back to pending with its attempt count reset."""
    count = services.job_queue.retry_all(team_id)
    return {"team_id": team_id, "retried": count}


@router.delete("/failed")
async def clear_failed(team_id: str, services: Services = Depends(get_services)):
    count = services.job_queue.clear_failed(team_id)
    return {"team_id": team_id, "cleared": count}
