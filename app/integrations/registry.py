"""
Transport factory keyed by source type.
"""

from typing import Any, Dict, Optional

from app.config import Settings, get_settings
from app.integrations.slack.socket import SlackSocketTransport
from app.integrations.transport import MemoryTransport, SourceTransport
from app.models.enums import SourceType


def build_transport(
    source_type: SourceType,
    credentials: Dict[str, Any],
    settings: Optional[Settings] = None,
) -> SourceTransport:
    """
    Create a transport for one (team, source) pair.

    Slack tokens missing from credentials fall back to the configured defaults.

    Raises:
        ValueError: No live transport exists for this source type
    """
    settings = settings or get_settings()

    if source_type == SourceType.SLACK:
        return SlackSocketTransport(
            bot_token=credentials.get("bot_token") or settings.slack_bot_token,
            app_token=credentials.get("app_token") or settings.slack_app_token,
        )
    if source_type == SourceType.SIMULATED:
        return MemoryTransport(
            workspace_id=credentials.get("workspace_id", "simulated"),
            workspace_name=credentials.get("workspace_name", "Simulated workspace"),
        )
    # Other sources submit events through the simulate endpoint
    raise ValueError(f"No live transport for source type {source_type.value}")
