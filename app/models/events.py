"""
Source Event Model

Normalized representation of one inbound message or document change,
regardless of the platform it came from (Slack, Drive, Zoom, Meet, ...).
"""

from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from app.models.enums import SourceType
from app.utils.helpers import fingerprint_for, utcnow


class SourceEvent(BaseModel):
    """Ephemeral inbound event. Only its fingerprint outlives the dedup window."""

    team_id: str
    source_type: SourceType
    external_id: str
    fingerprint: str
    raw_payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def build(
        cls,
        team_id: str,
        source_type: SourceType,
        external_id: str,
        content: str,
        channel: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
        **extra: Any,
    ) -> "SourceEvent":
        """
        Build an event from the `{externalId, content, channel, timestamp}`
        shape every source delivers, computing its fingerprint.
        """
        payload = {"external_id": external_id, "content": content, "channel": channel}
        payload.update({k: v for k, v in extra.items() if v is not None})
        return cls(
            team_id=team_id,
            source_type=source_type,
            external_id=external_id,
            fingerprint=fingerprint_for(source_type.value, external_id, content),
            raw_payload=payload,
            occurred_at=occurred_at or utcnow(),
        )

    @property
    def content(self) -> str:
        return self.raw_payload.get("content") or ""

    @property
    def channel(self) -> Optional[str]:
        return self.raw_payload.get("channel")
