"""
Connection Manager

Owns one long-lived listening task per (team, source) pair.

State machine:
    disconnected -> connecting -> connected -> idle -> connected
    any transport error -> disconnected, reconnect after full-jitter backoff
    max_reconnect_attempts consecutive failures -> disconnected for good
    (critical error logged, manual "start listening" required)
    auth failure -> disconnected for good, no retry

Deliveries are acked to the provider only after the intake has recorded
them, so a crash between receive and ack causes a redelivery, never a loss.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy import delete, update
from sqlalchemy.orm import sessionmaker

from app.db.models import IntegrationConnection, Team
from app.errors import AuthError, NotFoundError, TeamDisabledError
from app.integrations.transport import Delivery, SourceTransport, WorkspaceIdentity
from app.models.enums import ConnectionState, SourceType
from app.models.events import SourceEvent
from app.services.intake import EventIntake
from app.services.monitor import ErrorMonitor
from app.services.notifications import NotificationBus
from app.utils.helpers import full_jitter_backoff, truncate, utcnow

logger = logging.getLogger(__name__)

TransportFactory = Callable[[SourceType, Dict[str, Any]], SourceTransport]
CredentialsLookup = Callable[[IntegrationConnection], Dict[str, Any]]

Key = Tuple[str, str]


@dataclass
class ConnectionHandle:
    """A registered connection: its transport and the task listening on it."""

    team_id: str
    source_type: SourceType
    transport: SourceTransport
    identity: WorkspaceIdentity
    state: ConnectionState = ConnectionState.CONNECTING
    task: Optional["asyncio.Task[None]"] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    last_activity_at: Optional[datetime] = None
    events_received: int = 0

    @property
    def key(self) -> Key:
        return (self.team_id, self.source_type.value)

    @property
    def is_running(self) -> bool:
        return self.task is not None and not self.task.done()


class ConnectionManager:
    """Registry and supervisor of all live source connections."""

    def __init__(
        self,
        session_factory: sessionmaker,
        intake: EventIntake,
        error_monitor: ErrorMonitor,
        transport_factory: TransportFactory,
        bus: Optional[NotificationBus] = None,
        reconnect_base_seconds: float = 1.0,
        reconnect_cap_seconds: float = 300.0,
        max_reconnect_attempts: int = 10,
        idle_after_seconds: float = 3600.0,
        receive_timeout_seconds: float = 5.0,
        staged_startup_batch: int = 5,
        staged_startup_delay_seconds: float = 2.0,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.intake = intake
        self.error_monitor = error_monitor
        self.transport_factory = transport_factory
        self.bus = bus
        self.reconnect_base_seconds = reconnect_base_seconds
        self.reconnect_cap_seconds = reconnect_cap_seconds
        self.max_reconnect_attempts = max_reconnect_attempts
        self.idle_after = timedelta(seconds=idle_after_seconds)
        self.receive_timeout_seconds = receive_timeout_seconds
        self.staged_startup_batch = max(1, staged_startup_batch)
        self.staged_startup_delay_seconds = staged_startup_delay_seconds
        self.rng = rng
        self._sleep = sleep
        self._handles: Dict[Key, ConnectionHandle] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(
        self, team_id: str, source_type: SourceType, credentials: Dict[str, Any]
    ) -> ConnectionHandle:
        """
        Authorize, persist and start listening.

        An existing handle for the same pair is disconnected first.

        Raises:
            AuthError: The platform rejected the credentials
            NotFoundError: Unknown team
            TeamDisabledError: Team is soft-disabled
        """
        self._require_active_team(team_id)

        transport = self.transport_factory(source_type, credentials)
        try:
            identity = await transport.authorize()
        except AuthError as e:
            await self._close_transport(transport)
            self._persist(
                team_id, source_type, state=ConnectionState.DISCONNECTED, last_error=str(e)
            )
            self.error_monitor.log_auth_failure(team_id, source_type.value, str(e))
            raise

        existing = self._handles.get((team_id, source_type.value))
        if existing is not None:
            await self.disconnect(existing)

        self._upsert(team_id, source_type, identity, credentials)
        handle = ConnectionHandle(
            team_id=team_id,
            source_type=source_type,
            transport=transport,
            identity=identity,
        )
        self._handles[handle.key] = handle
        handle.task = asyncio.create_task(
            self._run(handle), name=f"connection:{team_id}:{source_type.value}"
        )
        logger.info(
            f"Connecting {source_type.value} for team {team_id} "
            f"(workspace {identity.workspace_name or identity.workspace_id})"
        )
        return handle

    async def disconnect(self, handle: ConnectionHandle) -> None:
        """Stop listening and release the transport. Queued jobs are unaffected."""
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
            try:
                await handle.task
            except asyncio.CancelledError:
                pass
        else:
            await self._close_transport(handle.transport)

        if self._handles.get(handle.key) is handle:
            del self._handles[handle.key]
        self._set_state(handle, ConnectionState.DISCONNECTED)
        logger.info(f"Disconnected {handle.source_type.value} for team {handle.team_id}")

    async def disconnect_team(self, team_id: str, source_type: SourceType) -> bool:
        handle = self._handles.get((team_id, source_type.value))
        if handle is None:
            return False
        await self.disconnect(handle)
        return True

    async def remove(self, team_id: str, source_type: SourceType) -> None:
        """Disconnect and forget the integration entirely."""
        await self.disconnect_team(team_id, source_type)
        with self.session_factory() as db:
            result = db.execute(
                delete(IntegrationConnection)
                .where(
                    IntegrationConnection.team_id == team_id,
                    IntegrationConnection.source_type == source_type.value,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
        if result.rowcount == 0:
            raise NotFoundError("Connection", f"{team_id}/{source_type.value}")
        logger.info(f"Removed {source_type.value} integration for team {team_id}")

    async def start_listening(self, team_id: str, source_type: SourceType) -> ConnectionHandle:
        """Manual reconnect using the stored credentials; resets the failure budget."""
        with self.session_factory() as db:
            row = (
                db.query(IntegrationConnection)
                .filter(
                    IntegrationConnection.team_id == team_id,
                    IntegrationConnection.source_type == source_type.value,
                )
                .first()
            )
            if row is None:
                raise NotFoundError("Connection", f"{team_id}/{source_type.value}")
            credentials = dict(row.credentials or {})

        logger.info(f"Manual start listening for {source_type.value}, team {team_id}")
        return await self.connect(team_id, source_type, credentials)

    async def initialize_all(
        self, credentials_lookup: Optional[CredentialsLookup] = None
    ) -> int:
        """
        Reconnect every stored connection at startup.

        Connections are started in batches with a pause between batches so a
        restart does not open hundreds of sockets at once. Disabled teams and
        connections waiting for a manual reconnect are skipped.
        """
        with self.session_factory() as db:
            rows = (
                db.query(IntegrationConnection)
                .join(Team, Team.id == IntegrationConnection.team_id)
                .filter(
                    Team.disabled.is_(False),
                    IntegrationConnection.needs_manual_reconnect.is_(False),
                )
                .order_by(IntegrationConnection.created_at)
                .all()
            )

        started = 0
        batch_size = self.staged_startup_batch
        for i in range(0, len(rows), batch_size):
            if i:
                await self._sleep(self.staged_startup_delay_seconds)
            for row in rows[i : i + batch_size]:
                if credentials_lookup:
                    credentials = credentials_lookup(row)
                else:
                    credentials = row.credentials
                try:
                    await self.connect(
                        row.team_id, SourceType(row.source_type), dict(credentials or {})
                    )
                    started += 1
                except Exception as e:
                    # One bad integration must not block the rest
                    logger.error(
                        f"Startup connect failed for {row.source_type}, "
                        f"team {row.team_id}: {e}"
                    )

        logger.info(f"Initialized {started}/{len(rows)} stored connections")
        return started

    async def shutdown(self) -> None:
        handles = list(self._handles.values())
        for handle in handles:
            await self.disconnect(handle)
        logger.info(f"Connection manager stopped ({len(handles)} connections)")

    async def test_connection(
        self, source_type: SourceType, credentials: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Authorize without connecting or persisting anything."""
        transport = self.transport_factory(source_type, credentials)
        try:
            identity = await transport.authorize()
            return {
                "ok": True,
                "workspace_id": identity.workspace_id,
                "workspace_name": identity.workspace_name,
            }
        except AuthError as e:
            return {"ok": False, "error": str(e)}
        finally:
            await self._close_transport(transport)

    # ------------------------------------------------------------------
    # Listening task
    # ------------------------------------------------------------------

    async def _run(self, handle: ConnectionHandle) -> None:
        try:
            while True:
                self._set_state(handle, ConnectionState.CONNECTING)
                try:
                    await handle.transport.open()
                    self._on_connected(handle)
                    await self._listen(handle)
                except asyncio.CancelledError:
                    raise
                except AuthError as e:
                    self._on_auth_failure(handle, e)
                    return
                except Exception as e:
                    if not await self._on_transport_failure(handle, e):
                        return
        finally:
            await self._close_transport(handle.transport)

    async def _listen(self, handle: ConnectionHandle) -> None:
        transport = handle.transport
        while True:
            delivery = await transport.receive(self.receive_timeout_seconds)
            now = utcnow()
            if delivery is None:
                if (
                    handle.state == ConnectionState.CONNECTED
                    and handle.last_activity_at is not None
                    and now - handle.last_activity_at >= self.idle_after
                ):
                    self._set_state(handle, ConnectionState.IDLE)
                continue

            handle.last_activity_at = now
            if handle.state == ConnectionState.IDLE:
                self._set_state(handle, ConnectionState.CONNECTED)
            await self._deliver(handle, delivery)

    async def _deliver(self, handle: ConnectionHandle, delivery: Delivery) -> None:
        if delivery.skip:
            await handle.transport.ack(delivery)
            return

        event = SourceEvent.build(
            team_id=handle.team_id,
            source_type=handle.source_type,
            external_id=delivery.external_id,
            content=delivery.content,
            channel=delivery.channel,
            occurred_at=delivery.occurred_at,
            **delivery.extra,
        )
        try:
            receipt = self.intake.submit(event)
        except (NotFoundError, TeamDisabledError) as e:
            # Nothing will ever process it; let the provider move on
            logger.warning(
                f"Dropping {handle.source_type.value} event {delivery.external_id}: {e}"
            )
            await handle.transport.ack(delivery)
            return
        except Exception as e:
            # Not recorded, so not acked: the provider will redeliver
            logger.error(f"Intake failed for event {delivery.external_id}: {e}", exc_info=True)
            return

        await handle.transport.ack(delivery)
        handle.events_received += 1
        self._persist(
            handle.team_id, handle.source_type, last_activity_at=handle.last_activity_at
        )
        if not receipt.duplicate:
            logger.debug(f"Event {delivery.external_id} queued as job {receipt.job_id}")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _on_connected(self, handle: ConnectionHandle) -> None:
        now = utcnow()
        handle.consecutive_failures = 0
        handle.last_error = None
        handle.last_activity_at = now
        handle.state = ConnectionState.CONNECTED
        self._persist(
            handle.team_id,
            handle.source_type,
            state=ConnectionState.CONNECTED,
            consecutive_failures=0,
            needs_manual_reconnect=False,
            last_error=None,
            last_connected_at=now,
            last_activity_at=now,
        )
        self._publish_state(handle)
        logger.info(f"{handle.source_type.value} connected for team {handle.team_id}")

    def _on_auth_failure(self, handle: ConnectionHandle, error: AuthError) -> None:
        handle.last_error = str(error)
        handle.state = ConnectionState.DISCONNECTED
        self._persist(
            handle.team_id,
            handle.source_type,
            state=ConnectionState.DISCONNECTED,
            last_error=truncate(str(error), 1000),
            needs_manual_reconnect=True,
        )
        self._publish_state(handle)
        self.error_monitor.log_auth_failure(
            handle.team_id, handle.source_type.value, str(error)
        )

    async def _on_transport_failure(self, handle: ConnectionHandle, error: Exception) -> bool:
        """Record a failure. Returns True if a reconnect should follow."""
        await self._close_transport(handle.transport)
        handle.consecutive_failures += 1
        handle.last_error = str(error) or type(error).__name__
        handle.state = ConnectionState.DISCONNECTED
        exhausted = handle.consecutive_failures >= self.max_reconnect_attempts

        self._persist(
            handle.team_id,
            handle.source_type,
            state=ConnectionState.DISCONNECTED,
            last_error=truncate(handle.last_error, 1000),
            consecutive_failures=handle.consecutive_failures,
            needs_manual_reconnect=exhausted,
        )
        self._publish_state(handle)

        if exhausted:
            self.error_monitor.log_connection_exhausted(
                handle.team_id,
                handle.source_type.value,
                handle.consecutive_failures,
                handle.last_error,
            )
            return False

        if handle.consecutive_failures == 1:
            self.error_monitor.log_connection_lost(
                handle.team_id, handle.source_type.value, handle.last_error
            )

        delay = full_jitter_backoff(
            handle.consecutive_failures - 1,
            self.reconnect_base_seconds,
            self.reconnect_cap_seconds,
            self.rng,
        )
        logger.warning(
            f"{handle.source_type.value} for team {handle.team_id} failed "
            f"({handle.consecutive_failures}/{self.max_reconnect_attempts}): "
            f"{handle.last_error}; reconnecting in {delay:.1f}s"
        )
        await self._sleep(delay)
        return True

    def _set_state(self, handle: ConnectionHandle, state: ConnectionState) -> None:
        if handle.state == state:
            return
        handle.state = state
        self._persist(handle.team_id, handle.source_type, state=state)
        self._publish_state(handle)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_handle(self, team_id: str, source_type: SourceType) -> Optional[ConnectionHandle]:
        return self._handles.get((team_id, source_type.value))

    def status(self, team_id: str) -> List[Dict[str, Any]]:
        """Stored connection rows for a team, overlaid with live task state."""
        with self.session_factory() as db:
            rows = (
                db.query(IntegrationConnection)
                .filter(IntegrationConnection.team_id == team_id)
                .order_by(IntegrationConnection.source_type)
                .all()
            )

        statuses = []
        for row in rows:
            handle = self._handles.get((row.team_id, row.source_type))
            statuses.append(
                {
                    "team_id": row.team_id,
                    "source_type": row.source_type,
                    "state": handle.state.value if handle else row.state,
                    "listening": bool(handle and handle.is_running),
                    "workspace_id": row.workspace_id,
                    "workspace_name": row.workspace_name,
                    "last_error": row.last_error,
                    "last_activity_at": row.last_activity_at,
                    "last_connected_at": row.last_connected_at,
                    "consecutive_failures": row.consecutive_failures,
                    "needs_manual_reconnect": row.needs_manual_reconnect,
                    "events_received": handle.events_received if handle else 0,
                }
            )
        return statuses

    def stats(self) -> Dict[str, int]:
        with self.session_factory() as db:
            rows = db.query(
                IntegrationConnection.team_id,
                IntegrationConnection.source_type,
                IntegrationConnection.state,
                IntegrationConnection.needs_manual_reconnect,
            ).all()

        counts = {state.value: 0 for state in ConnectionState}
        for team_id, source_type, stored_state, _ in rows:
            handle = self._handles.get((team_id, source_type))
            state = handle.state.value if handle else stored_state
            counts[state] = counts.get(state, 0) + 1
        counts["total"] = len(rows)
        counts["needs_manual_reconnect"] = sum(1 for row in rows if row[3])
        return counts

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _require_active_team(self, team_id: str) -> None:
        with self.session_factory() as db:
            team = db.get(Team, team_id)
        if team is None:
            raise NotFoundError("Team", team_id)
        if team.disabled:
            raise TeamDisabledError(f"Team {team_id} is disabled")

    def _upsert(
        self,
        team_id: str,
        source_type: SourceType,
        identity: WorkspaceIdentity,
        credentials: Dict[str, Any],
    ) -> None:
        with self.session_factory() as db:
            row = (
                db.query(IntegrationConnection)
                .filter(
                    IntegrationConnection.team_id == team_id,
                    IntegrationConnection.source_type == source_type.value,
                )
                .first()
            )
            if row is None:
                row = IntegrationConnection(team_id=team_id, source_type=source_type.value)
                db.add(row)
            row.state = ConnectionState.CONNECTING.value
            row.workspace_id = identity.workspace_id
            row.workspace_name = identity.workspace_name
            row.credentials = dict(credentials)
            row.consecutive_failures = 0
            row.needs_manual_reconnect = False
            row.last_error = None
            db.commit()

    def _persist(self, team_id: str, source_type: SourceType, **fields: Any) -> None:
        if "state" in fields:
            fields["state"] = fields["state"].value
        fields["updated_at"] = utcnow()
        with self.session_factory() as db:
            db.execute(
                update(IntegrationConnection)
                .where(
                    IntegrationConnection.team_id == team_id,
                    IntegrationConnection.source_type == source_type.value,
                )
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
            db.commit()

    async def _close_transport(self, transport: SourceTransport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport: {e}")

    def _publish_state(self, handle: ConnectionHandle) -> None:
        if self.bus is None:
            return
        self.bus.publish(
            "connection_state",
            {
                "team_id": handle.team_id,
                "source_type": handle.source_type.value,
                "state": handle.state.value,
                "consecutive_failures": handle.consecutive_failures,
                "last_error": handle.last_error,
            },
        )
