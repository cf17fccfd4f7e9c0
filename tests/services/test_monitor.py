"""
Tests for the error monitor and health aggregation.
"""

import pytest

from app.errors import NotFoundError
from app.models.enums import ErrorCategory, ErrorSeverity
from app.services.monitor import HealthMonitor
from app.services.notifications import NotificationBus


class TestErrorMonitor:
    def test_stats_by_severity_and_category(self, error_monitor, team):
        error_monitor.log_connection_lost(team.id, "slack", "reset by peer")
        error_monitor.log_connection_exhausted(team.id, "slack", 10, "reset by peer")
        error_monitor.log_sync_failure(team.id, "s-1", "503")

        stats = error_monitor.stats(team.id)

        assert stats["total"] == 3
        assert stats["critical"] == 1
        assert stats["unresolved"] == 3
        assert stats["by_category"] == {"connection": 2, "sync_error": 1}

    def test_resolve_is_idempotent(self, error_monitor, team):
        entry = error_monitor.log_sync_failure(team.id, "s-1", "503")

        first = error_monitor.resolve_error(entry.id, "U_OPS")
        second = error_monitor.resolve_error(entry.id, "U_OTHER")

        assert first.resolved and second.resolved
        assert second.resolved_by == "U_OPS"
        assert error_monitor.stats(team.id)["unresolved"] == 0

    def test_resolve_unknown(self, error_monitor):
        with pytest.raises(NotFoundError):
            error_monitor.resolve_error("missing")

    def test_exception_context_is_captured(self, error_monitor, team):
        try:
            raise ValueError("bad json")
        except ValueError as e:
            entry = error_monitor.log_ai_error(team.id, "extraction", e)

        assert entry.category == ErrorCategory.AI_ERROR.value
        assert entry.context["error_type"] == "ValueError"
        assert "stack" in entry.context

    def test_recent_errors_filters(self, error_monitor, team):
        error_monitor.log_connection_exhausted(team.id, "slack", 10, "gone")
        error_monitor.log_quota_exhausted(team.id, 20, 20)

        critical = error_monitor.recent_errors(severity=ErrorSeverity.CRITICAL)
        quota = error_monitor.recent_errors(team_id=team.id, category=ErrorCategory.QUOTA)

        assert [e.category for e in critical] == ["connection"]
        assert [e.severity for e in quota] == ["info"]

    def test_quota_entry_is_not_repeated_until_resolved(self, error_monitor, team):
        first = error_monitor.log_quota_exhausted(team.id, 20, 20)

        assert error_monitor.log_quota_exhausted(team.id, 20, 20) is None

        error_monitor.resolve_error(first.id, resolved_by="U_OPS")
        again = error_monitor.log_quota_exhausted(team.id, 20, 20)
        assert again is not None
        assert again.id != first.id


class TestHealthMonitor:
    def test_team_and_system_health(self, error_monitor, job_queue, team):
        health = HealthMonitor(
            error_monitor,
            job_queue,
            connection_statuses=lambda team_id: [{"team_id": team_id, "state": "connected"}],
            connection_stats=lambda: {"connected": 1, "total": 1},
        )
        error_monitor.log_sync_failure(team.id, "s-1", "503")

        team_health = health.team_health(team.id)
        system = health.system_health()

        assert team_health["connections"][0]["state"] == "connected"
        assert team_health["jobs"]["pending"] == 0
        assert team_health["errors"]["total"] == 1
        assert system["connections"]["total"] == 1
        assert "workers" not in system


class TestNotificationBus:
    @pytest.mark.asyncio
    async def test_fan_out_and_overflow(self):
        bus = NotificationBus(max_queue_size=2)
        queue = bus.subscribe()

        for i in range(3):
            bus.publish("job_completed", {"n": i})

        received = [queue.get_nowait()["data"]["n"] for _ in range(queue.qsize())]
        assert received == [1, 2]

        bus.unsubscribe(queue)
        assert bus.subscriber_count == 0
