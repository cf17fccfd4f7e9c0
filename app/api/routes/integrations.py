"""
Integration API Routes

Connect, disconnect and inspect a team's live source connections, plus a
simulate endpoint that pushes an event through intake without a live source.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.deps import get_services, http_error
from app.integrations.slack.parser import parse_permalink
from app.models.api_responses import ConnectionStatusResponse
from app.models.enums import SourceType
from app.models.events import SourceEvent
from app.services.container import Services

logger = logging.getLogger(__name__)
router = APIRouter()


class CredentialsRequest(BaseModel):
    """Platform credentials, e.g. {"bot_token": "xoxb-…", "app_token": "xapp-…"} for Slack."""

    credentials: Dict[str, Any] = Field(default_factory=dict)


class SimulateRequest(BaseModel):
    source_type: SourceType = SourceType.SIMULATED
    external_id: Optional[str] = None
    permalink: Optional[str] = Field(
        None, description="Slack message permalink; derives external_id and channel"
    )
    content: str = Field(..., min_length=1)
    channel: Optional[str] = None
    occurred_at: Optional[datetime] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


@router.get("/status", response_model=List[ConnectionStatusResponse])
async def connection_status(team_id: str, services: Services = Depends(get_services)):
    return [ConnectionStatusResponse(**status) for status in services.connections.status(team_id)]


@router.post("/simulate")
async def simulate_event(
    team_id: str, request: SimulateRequest, services: Services = Depends(get_services)
):
    """
    Submit an event as if a live source had delivered it.

    Goes through the same dedup and enqueue path as real deliveries, so
    posting the same event twice returns the same job. A Slack permalink
    yields the same external_id the live Socket Mode transport would.
    """
    external_id, channel = request.external_id, request.channel
    extra = dict(request.extra)
    try:
        if request.permalink:
            parsed = parse_permalink(request.permalink)
            external_id = f"{parsed.channel_id}:{parsed.message_ts}"
            channel = channel or parsed.channel_id
            extra["permalink"] = request.permalink
        if not external_id:
            raise ValueError("external_id or permalink is required")

        event = SourceEvent.build(
            team_id=team_id,
            source_type=request.source_type,
            external_id=external_id,
            content=request.content,
            channel=channel,
            occurred_at=request.occurred_at,
            **extra,
        )
        receipt = services.intake.submit(event)
    except Exception as e:
        raise http_error(e)
    return {"job_id": receipt.job_id, "duplicate": receipt.duplicate}


@router.post("/{source_type}/test")
async def test_connection(
    team_id: str,
    source_type: SourceType,
    request: CredentialsRequest,
    services: Services = Depends(get_services),
):
    """Check credentials without connecting or storing anything."""
    try:
        return await services.connections.test_connection(source_type, request.credentials)
    except Exception as e:
        raise http_error(e)


@router.post("/{source_type}/connect", response_model=ConnectionStatusResponse)
async def connect(
    team_id: str,
    source_type: SourceType,
    request: CredentialsRequest,
    services: Services = Depends(get_services),
):
    try:
        await services.connections.connect(team_id, source_type, request.credentials)
    except Exception as e:
        raise http_error(e)
    return _status_for(services, team_id, source_type)


@router.post("/{source_type}/start-listening", response_model=ConnectionStatusResponse)
async def start_listening(
    team_id: str, source_type: SourceType, services: Services = Depends(get_services)
):
    """Manual reconnect with the stored credentials, e.g. after retries were exhausted."""
    try:
        await services.connections.start_listening(team_id, source_type)
    except Exception as e:
        raise http_error(e)
    return _status_for(services, team_id, source_type)


@router.post("/{source_type}/disconnect")
async def disconnect(
    team_id: str, source_type: SourceType, services: Services = Depends(get_services)
):
    stopped = await services.connections.disconnect_team(team_id, source_type)
    return {"team_id": team_id, "source_type": source_type, "disconnected": stopped}


@router.delete("/{source_type}")
async def remove(
    team_id: str, source_type: SourceType, services: Services = Depends(get_services)
):
    try:
        await services.connections.remove(team_id, source_type)
    except Exception as e:
        raise http_error(e)
    return {"team_id": team_id, "source_type": source_type, "removed": True}


def _status_for(services: Services, team_id: str, source_type: SourceType):
    for status in services.connections.status(team_id):
        if status["source_type"] == source_type.value:
            return ConnectionStatusResponse(**status)
    raise http_error(ValueError(f"No {source_type.value} connection for team {team_id}"))
