# Slack integration module
from app.integrations.slack.parser import build_permalink, parse_permalink
from app.integrations.slack.socket import SlackSocketTransport

__all__ = ["SlackSocketTransport", "build_permalink", "parse_permalink"]
