"""
Health & Error API Routes
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.api.deps import get_services, http_error
from app.models.api_responses import ErrorLogResponse, ErrorStatsResponse
from app.models.enums import ErrorCategory, ErrorSeverity
from app.services.container import Services

logger = logging.getLogger(__name__)
router = APIRouter()


class ResolveRequest(BaseModel):
    resolved_by: Optional[str] = None


@router.get("/system")
async def system_health(services: Services = Depends(get_services)):
    return services.health.system_health()


@router.get("/teams/{team_id}")
async def team_health(team_id: str, services: Services = Depends(get_services)):
    try:
        services.teams.get(team_id)
    except Exception as e:
        raise http_error(e)
    return services.health.team_health(team_id)


@router.get("/errors", response_model=List[ErrorLogResponse])
async def list_errors(
    team_id: Optional[str] = Query(None),
    severity: Optional[ErrorSeverity] = Query(None),
    category: Optional[ErrorCategory] = Query(None),
    resolved: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
):
    entries = services.error_monitor.recent_errors(
        team_id=team_id, severity=severity, category=category, resolved=resolved, limit=limit
    )
    return [ErrorLogResponse.model_validate(entry) for entry in entries]


@router.get("/errors/stats", response_model=ErrorStatsResponse)
async def error_stats(
    team_id: Optional[str] = Query(None), services: Services = Depends(get_services)
):
    return ErrorStatsResponse(**services.error_monitor.stats(team_id))


@router.post("/errors/{error_id}/resolve", response_model=ErrorLogResponse)
async def resolve_error(
    error_id: str, request: ResolveRequest, services: Services = Depends(get_services)
):
    try:
        entry = services.error_monitor.resolve_error(error_id, request.resolved_by)
    except Exception as e:
        raise http_error(e)
    return ErrorLogResponse.model_validate(entry)
