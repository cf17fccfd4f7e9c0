"""
Route dependencies and error translation.
"""

import logging

from fastapi import HTTPException, Request

from app.errors import (
    AlreadyDecidedError,
    AuthError,
    InvalidStateError,
    NotFoundError,
    TeamDisabledError,
)
from app.services.container import Services

logger = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    return request.app.state.services


def http_error(error: Exception) -> HTTPException:
    """Map a pipeline exception to the HTTP response the dashboard expects."""
    if isinstance(error, HTTPException):
        return error
    if isinstance(error, NotFoundError):
        return HTTPException(
            status_code=404,
            detail={"error": "not_found", "entity": error.entity, "id": error.entity_id},
        )
    if isinstance(error, AlreadyDecidedError):
        return HTTPException(
            status_code=409,
            detail={
                "error": "already_decided",
                "id": error.suggestion_id,
                "status": error.status,
            },
        )
    if isinstance(error, InvalidStateError):
        return HTTPException(
            status_code=409, detail={"error": "invalid_state", "message": str(error)}
        )
    if isinstance(error, AuthError):
        return HTTPException(
            status_code=401, detail={"error": "auth_failed", "message": str(error)}
        )
    if isinstance(error, TeamDisabledError):
        return HTTPException(
            status_code=403, detail={"error": "team_disabled", "message": str(error)}
        )
    if isinstance(error, ValueError):
        return HTTPException(
            status_code=400, detail={"error": "bad_request", "message": str(error)}
        )

    logger.error(f"Unexpected API error: {error}", exc_info=error)
    return HTTPException(status_code=500, detail={"error": "internal", "message": str(error)})
