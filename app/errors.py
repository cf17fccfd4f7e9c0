"""
Pipeline Error Taxonomy

Errors raised across connections, the job queue, the AI capabilities,
the approval workflow and the sync applier.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    retryable: bool = False


class AuthError(PipelineError):
    """
    Raised when a source platform rejects credentials (expired/revoked token).
    Fatal to a connection - never retried automatically.
    """

    pass


class TransportError(PipelineError):
    """Raised when a live connection drops or a socket read fails."""

    retryable = True


class TransientProviderError(PipelineError):
    """
    Raised when an AI or destination provider fails in a way that may succeed
    later (timeouts, rate limits, 5xx).
    """

    retryable = True


class ContentRejectionError(PipelineError):
    """
    Raised when a provider returns malformed output or refuses unsafe content.
    Terminal - the job is failed without retry.
    """

    pass


class NotFoundError(PipelineError):
    """Raised when a requested entity does not exist."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class AlreadyDecidedError(PipelineError):
    """Raised when approving or rejecting a suggestion that is no longer pending."""

    def __init__(self, suggestion_id: str, status: Optional[str] = None):
        super().__init__(
            f"Suggestion {suggestion_id} is already decided (status: {status})"
        )
        self.suggestion_id = suggestion_id
        self.status = status


class SyncError(PipelineError):
    """Raised when writing to the destination knowledge store fails."""

    retryable = True


class QuotaExceededError(PipelineError):
    """Raised when a team has used its suggestion quota."""

    def __init__(self, team_id: str, used: int, limit: int):
        super().__init__(f"Team {team_id} used {used}/{limit} suggestions")
        self.team_id = team_id
        self.used = used
        self.limit = limit


class TeamDisabledError(PipelineError):
    """Raised when work is submitted for a soft-disabled team."""

    pass


class InvalidStateError(PipelineError):
    """Raised when an operation does not apply to an entity's current state."""

    pass
