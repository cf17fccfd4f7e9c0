"""
Slack Permalink Helpers

Parses and builds Slack message permalinks.
"""

import re
from dataclasses import dataclass
from typing import Optional


@dataclass
class ParsedPermalink:
    """Parsed Slack permalink components."""

    workspace: str
    channel_id: str
    message_ts: str


def parse_permalink(permalink: str) -> ParsedPermalink:
    """
    Parse a Slack message permalink.

    Examples:
        https://myworkspace.slack.com/archives/C123ABC456/p1234567890123456
        -> channel_id: C123ABC456
        -> message_ts: 1234567890.123456

    Raises:
        ValueError: If permalink format is invalid
    """
    # Pattern: https://{workspace}.slack.com/archives/{channel_id}/p{timestamp}
    pattern = r"https://([^.]+)\.slack\.com/archives/([A-Z0-9]+)/p(\d+)"
    match = re.match(pattern, permalink)

    if not match:
        raise ValueError(f"Invalid Slack permalink format: {permalink}")

    workspace, channel_id, ts_raw = match.groups()

    # p1234567890123456 -> 1234567890.123456 (10 digits before the dot, 6 after)
    message_ts = f"{ts_raw[:10]}.{ts_raw[10:]}"

    return ParsedPermalink(workspace=workspace, channel_id=channel_id, message_ts=message_ts)


def build_permalink(
    workspace_url: Optional[str], channel_id: str, message_ts: str
) -> Optional[str]:
    """
    Permalink for a message; parse_permalink reverses it.

    workspace_url is the `url` field of auth.test, e.g. "https://acme.slack.com/".
    """
    if not workspace_url or not channel_id or not message_ts:
        return None
    return f"{workspace_url.rstrip('/')}/archives/{channel_id}/p{message_ts.replace('.', '')}"
