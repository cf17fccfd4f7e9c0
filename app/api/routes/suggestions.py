"""
Suggestion API Routes

The dashboard's view of the approval queue: browse, decide, re-sync.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.api.deps import get_services, http_error
from app.models.api_responses import (
    BulkActionResponse,
    BulkFailureResponse,
    SuggestionResponse,
)
from app.models.enums import SuggestionStatus
from app.services.container import Services

logger = logging.getLogger(__name__)
router = APIRouter()


class DecisionRequest(BaseModel):
    actor_id: str = Field(..., description="User approving or rejecting")


class BulkDecisionRequest(BaseModel):
    actor_id: str
    suggestion_ids: List[str] = Field(..., min_length=1)


class DestinationRequest(BaseModel):
    page_ref: str
    current_content: Optional[str] = None


@router.get("", response_model=List[SuggestionResponse])
async def list_suggestions(
    team_id: str,
    status: Optional[SuggestionStatus] = Query(None, description="Filter by status"),
    source_type: Optional[str] = Query(None),
    knowledge_type: Optional[str] = Query(None),
    min_confidence: Optional[int] = Query(None, ge=0, le=100),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    """
    List a team's suggestions, newest first.

    Examples:
    - GET /api/teams/{team_id}/suggestions?status=pending
    - GET /api/teams/{team_id}/suggestions?min_confidence=80&knowledge_type=policy
    """
    suggestions = services.suggestions.list(
        team_id,
        status=status,
        source_type=source_type,
        knowledge_type=knowledge_type,
        min_confidence=min_confidence,
        limit=limit,
        offset=offset,
    )
    return [SuggestionResponse.model_validate(s) for s in suggestions]


@router.get("/activity")
async def list_activity(
    team_id: str,
    limit: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
):
    entries = services.suggestions.activity(team_id, limit=limit)
    return [
        {
            "suggestion_id": entry.suggestion_id,
            "status": entry.status,
            "title": entry.title,
            "source_type": entry.source_type,
            "actor_id": entry.actor_id,
            "created_at": entry.created_at,
        }
        for entry in entries
    ]


@router.post("/bulk-approve", response_model=BulkActionResponse)
async def bulk_approve(
    team_id: str, request: BulkDecisionRequest, services: Services = Depends(get_services)
):
    result = services.suggestions.bulk_approve(
        request.suggestion_ids, request.actor_id, team_id=team_id
    )
    return _bulk_response(result)


@router.post("/bulk-reject", response_model=BulkActionResponse)
async def bulk_reject(
    team_id: str, request: BulkDecisionRequest, services: Services = Depends(get_services)
):
    result = services.suggestions.bulk_reject(
        request.suggestion_ids, request.actor_id, team_id=team_id
    )
    return _bulk_response(result)


@router.get("/{suggestion_id}", response_model=SuggestionResponse)
async def get_suggestion(
    team_id: str, suggestion_id: str, services: Services = Depends(get_services)
):
    try:
        return SuggestionResponse.model_validate(
            services.suggestions.get(suggestion_id, team_id=team_id)
        )
    except Exception as e:
        raise http_error(e)


@router.post("/{suggestion_id}/approve", response_model=SuggestionResponse)
async def approve_suggestion(
    team_id: str,
    suggestion_id: str,
    request: DecisionRequest,
    services: Services = Depends(get_services),
):
    """Approve a pending suggestion; its sync job is queued in the same step."""
    try:
        suggestion = services.suggestions.approve(
            suggestion_id, request.actor_id, team_id=team_id
        )
    except Exception as e:
        raise http_error(e)
    return SuggestionResponse.model_validate(suggestion)


@router.post("/{suggestion_id}/reject", response_model=SuggestionResponse)
async def reject_suggestion(
    team_id: str,
    suggestion_id: str,
    request: DecisionRequest,
    services: Services = Depends(get_services),
):
    try:
        suggestion = services.suggestions.reject(
            suggestion_id, request.actor_id, team_id=team_id
        )
    except Exception as e:
        raise http_error(e)
    return SuggestionResponse.model_validate(suggestion)


@router.post("/{suggestion_id}/retry-sync")
async def retry_sync(
    team_id: str,
    suggestion_id: str,
    request: DecisionRequest,
    services: Services = Depends(get_services),
):
    """Queue another sync attempt for an approved suggestion whose sync gave up."""
    try:
        job_id = services.suggestions.retry_sync(
            suggestion_id, request.actor_id, team_id=team_id
        )
    except Exception as e:
        raise http_error(e)
    return {"suggestion_id": suggestion_id, "job_id": job_id}


@router.put("/{suggestion_id}/destination", response_model=SuggestionResponse)
async def update_destination(
    team_id: str,
    suggestion_id: str,
    request: DestinationRequest,
    services: Services = Depends(get_services),
):
    try:
        suggestion = services.suggestions.update_destination(
            suggestion_id,
            request.page_ref,
            current_content=request.current_content,
            team_id=team_id,
        )
    except Exception as e:
        raise http_error(e)
    return SuggestionResponse.model_validate(suggestion)


def _bulk_response(result) -> BulkActionResponse:
    return BulkActionResponse(
        succeeded=result.succeeded,
        failed=[BulkFailureResponse(id=f.id, reason=f.reason) for f in result.failed],
    )
