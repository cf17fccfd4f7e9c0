"""
Team API Routes

Minimal tenant administration: create, inspect, soft-disable.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.deps import get_services, http_error
from app.models.api_responses import TeamResponse
from app.models.enums import SourceType
from app.services.container import Services

logger = logging.getLogger(__name__)
router = APIRouter()


class TeamCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    suggestions_limit: Optional[int] = Field(None, ge=0)
    auto_approve_threshold: Optional[int] = Field(None, ge=0, le=100)


class AutoApproveRequest(BaseModel):
    threshold: Optional[int] = Field(
        None, ge=0, le=100, description="Minimum confidence to auto-approve; null disables"
    )


@router.post("", response_model=TeamResponse, status_code=201)
async def create_team(request: TeamCreateRequest, services: Services = Depends(get_services)):
    team = services.teams.create(
        request.name,
        suggestions_limit=request.suggestions_limit,
        auto_approve_threshold=request.auto_approve_threshold,
    )
    return TeamResponse.model_validate(team)


@router.get("/{team_id}", response_model=TeamResponse)
async def get_team(team_id: str, services: Services = Depends(get_services)):
    try:
        return TeamResponse.model_validate(services.teams.get(team_id))
    except Exception as e:
        raise http_error(e)


@router.post("/{team_id}/disable", response_model=TeamResponse)
async def disable_team(team_id: str, services: Services = Depends(get_services)):
    """
    Soft-disable a team and stop its connections.

    Jobs already queued still run to completion.
    """
    try:
        team = services.teams.set_disabled(team_id, True)
    except Exception as e:
        raise http_error(e)

    for status in services.connections.status(team_id):
        await services.connections.disconnect_team(team_id, SourceType(status["source_type"]))
    return TeamResponse.model_validate(team)


@router.post("/{team_id}/enable", response_model=TeamResponse)
async def enable_team(team_id: str, services: Services = Depends(get_services)):
    try:
        return TeamResponse.model_validate(services.teams.set_disabled(team_id, False))
    except Exception as e:
        raise http_error(e)


@router.put("/{team_id}/auto-approve", response_model=TeamResponse)
async def set_auto_approve(
    team_id: str, request: AutoApproveRequest, services: Services = Depends(get_services)
):
    try:
        team = services.teams.set_auto_approve_threshold(team_id, request.threshold)
    except Exception as e:
        raise http_error(e)
    return TeamResponse.model_validate(team)
