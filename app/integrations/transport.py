"""
Source transports

A transport owns one live link to a source platform for one team. The
Connection Manager drives it: authorize, open, then receive/ack until it
raises, then close. Transports never reconnect on their own.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from app.errors import AuthError, TransportError
from app.models.enums import SourceType

logger = logging.getLogger(__name__)


@dataclass
class WorkspaceIdentity:
    """Who the credentials belong to on the source platform."""

    workspace_id: str
    workspace_name: Optional[str] = None
    bot_user_id: Optional[str] = None


@dataclass
class Delivery:
    """
    One inbound provider delivery.

    delivery_id is what ack() hands back to the provider; external_id is the
    stable id of the underlying message used for fingerprinting.
    """

    delivery_id: str
    external_id: str = ""
    content: str = ""
    channel: Optional[str] = None
    occurred_at: Optional[datetime] = None
    skip: bool = False  # Bot/self messages and non-message events
    extra: Dict[str, Any] = field(default_factory=dict)


class SourceTransport(ABC):
    source_type: SourceType

    @abstractmethod
    async def authorize(self) -> WorkspaceIdentity:
        """Verify credentials. Raises AuthError when they are rejected."""

    @abstractmethod
    async def open(self) -> None:
        """Establish the live link. Raises TransportError or AuthError."""

    @abstractmethod
    async def receive(self, timeout: float) -> Optional[Delivery]:
        """Next delivery, or None if nothing arrived within timeout."""

    @abstractmethod
    async def ack(self, delivery: Delivery) -> None:
        """Advance the provider's delivery cursor past this delivery."""

    @abstractmethod
    async def close(self) -> None:
        """Release the link. Safe to call more than once."""


class MemoryTransport(SourceTransport):
    """
    In-process transport for simulation and tests.

    Items pushed onto the inbox are either deliveries or exceptions; an
    exception is raised from receive() as if the link had dropped.
    """

    def __init__(
        self,
        source_type: SourceType = SourceType.SIMULATED,
        workspace_id: str = "local",
        workspace_name: Optional[str] = "Local workspace",
        auth_error: Optional[str] = None,
        open_errors: Optional[List[Exception]] = None,
        always_fail_open: bool = False,
    ):
        self.source_type = source_type
        self.identity = WorkspaceIdentity(workspace_id=workspace_id, workspace_name=workspace_name)
        self.auth_error = auth_error
        self.open_errors = list(open_errors or [])
        self.always_fail_open = always_fail_open

        self.inbox: "asyncio.Queue[Union[Delivery, Exception]]" = asyncio.Queue()
        self.acked: List[str] = []
        self.open_calls = 0
        self.close_calls = 0
        self.is_open = False

    def push(self, delivery: Delivery) -> None:
        self.inbox.put_nowait(delivery)

    def drop(self, error: Optional[Exception] = None) -> None:
        """Simulate the link dropping on the next receive."""
        self.inbox.put_nowait(error or TransportError("connection reset"))

    async def authorize(self) -> WorkspaceIdentity:
        if self.auth_error:
            raise AuthError(self.auth_error)
        return self.identity

    async def open(self) -> None:
        self.open_calls += 1
        if self.always_fail_open:
            raise TransportError("connection refused")
        if self.open_errors:
            raise self.open_errors.pop(0)
        self.is_open = True

    async def receive(self, timeout: float) -> Optional[Delivery]:
        if not self.is_open:
            raise TransportError("transport is not open")
        try:
            item = await asyncio.wait_for(self.inbox.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        if isinstance(item, Exception):
            self.is_open = False
            raise item
        return item

    async def ack(self, delivery: Delivery) -> None:
        self.acked.append(delivery.delivery_id)

    async def close(self) -> None:
        self.close_calls += 1
        self.is_open = False
