"""
API tests: FastAPI TestClient against services wired with fakes.
Background workers are not started; jobs are driven explicitly.
"""

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from app.models.enums import JobState
from tests.fakes import create_suggestion


@pytest.fixture
def client(services):
    with TestClient(create_app(services, start_background=False)) as client:
        yield client


@pytest.fixture
def team_id(client):
    response = client.post("/api/teams", json={"name": "Platform", "suggestions_limit": 5})
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture
def suggestion_id(services, session_factory, team_id):
    return create_suggestion(session_factory, services.suggestions, team_id).id


class TestMeta:
    def test_root_and_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
        assert "suggestions" in client.get("/").json()["endpoints"]


class TestTeams:
    def test_create_and_get(self, client, team_id):
        team = client.get(f"/api/teams/{team_id}").json()

        assert team["name"] == "Platform"
        assert team["suggestions_limit"] == 5
        assert team["disabled"] is False

    def test_unknown_team(self, client):
        response = client.get("/api/teams/missing")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"

    def test_disable_blocks_new_events(self, client, team_id):
        assert client.post(f"/api/teams/{team_id}/disable").json()["disabled"] is True

        response = client.post(
            f"/api/teams/{team_id}/integrations/simulate",
            json={"external_id": "m1", "content": "Deploy freeze starts Friday for all services"},
        )
        assert response.status_code == 403

    def test_auto_approve_threshold_validation(self, client, team_id):
        assert client.put(f"/api/teams/{team_id}/auto-approve", json={"threshold": 150}).status_code == 422
        response = client.put(f"/api/teams/{team_id}/auto-approve", json={"threshold": 90})
        assert response.json()["auto_approve_threshold"] == 90


class TestSimulateToSuggestion:
    def test_simulated_event_flows_to_pending_suggestion(self, client, services, team_id):
        body = {"external_id": "m1", "content": "Heads up: the staging URL changed to staging.internal"}
        first = client.post(f"/api/teams/{team_id}/integrations/simulate", json=body).json()
        second = client.post(f"/api/teams/{team_id}/integrations/simulate", json=body).json()
        assert first["duplicate"] is False
        assert second == {"job_id": first["job_id"], "duplicate": True}

        client.portal.call(services.workers.run_once, "api-test")

        suggestions = client.get(f"/api/teams/{team_id}/suggestions?status=pending").json()
        assert len(suggestions) == 1
        assert suggestions[0]["source_type"] == "simulated"
        assert suggestions[0]["confidence"] == 85

    def test_slack_permalink_becomes_source_link(self, client, services, team_id):
        permalink = "https://acme.slack.com/archives/C0PLATFORM/p1700000000000100"
        response = client.post(
            f"/api/teams/{team_id}/integrations/simulate",
            json={
                "source_type": "slack",
                "permalink": permalink,
                "content": "Deploy freeze starts Friday for every service",
            },
        )
        assert response.status_code == 200

        client.portal.call(services.workers.run_once, "api-test")

        suggestion = client.get(f"/api/teams/{team_id}/suggestions").json()[0]
        assert suggestion["source_link"] == permalink

    def test_event_needs_an_identity(self, client, team_id):
        response = client.post(
            f"/api/teams/{team_id}/integrations/simulate",
            json={"content": "Deploy freeze starts Friday for every service"},
        )
        assert response.status_code == 400


class TestSuggestions:
    def test_approve_then_conflict(self, client, team_id, suggestion_id):
        url = f"/api/teams/{team_id}/suggestions/{suggestion_id}"

        approved = client.post(f"{url}/approve", json={"actor_id": "U_ALICE"})
        again = client.post(f"{url}/reject", json={"actor_id": "U_BOB"})

        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"
        assert again.status_code == 409
        assert again.json()["detail"]["status"] == "approved"

    def test_missing_suggestion(self, client, team_id):
        response = client.post(
            f"/api/teams/{team_id}/suggestions/missing/approve", json={"actor_id": "U_ALICE"}
        )
        assert response.status_code == 404

    def test_bulk_approve_reports_failures(self, client, team_id, suggestion_id):
        response = client.post(
            f"/api/teams/{team_id}/suggestions/bulk-approve",
            json={"actor_id": "U_ALICE", "suggestion_ids": [suggestion_id, "missing"]},
        )

        assert response.json() == {
            "succeeded": [suggestion_id],
            "failed": [{"id": "missing", "reason": "not_found"}],
        }

    def test_confidence_filter(self, client, services, session_factory, team_id):
        create_suggestion(session_factory, services.suggestions, team_id, title="low", confidence=30)
        create_suggestion(session_factory, services.suggestions, team_id, title="high", confidence=95)

        titles = [
            s["title"]
            for s in client.get(f"/api/teams/{team_id}/suggestions?min_confidence=90").json()
        ]
        assert titles == ["high"]

    def test_retry_sync_requires_approval(self, client, team_id, suggestion_id):
        response = client.post(
            f"/api/teams/{team_id}/suggestions/{suggestion_id}/retry-sync",
            json={"actor_id": "U_OPS"},
        )
        assert response.status_code == 409

    def test_update_destination(self, client, team_id, suggestion_id):
        response = client.put(
            f"/api/teams/{team_id}/suggestions/{suggestion_id}/destination",
            json={"page_ref": "fact/staging.md", "current_content": "old"},
        )
        assert response.json()["destination_page_ref"] == "fact/staging.md"

    def test_activity(self, client, team_id, suggestion_id):
        client.post(
            f"/api/teams/{team_id}/suggestions/{suggestion_id}/reject", json={"actor_id": "U_ALICE"}
        )

        statuses = {a["status"] for a in client.get(f"/api/teams/{team_id}/suggestions/activity").json()}
        assert statuses == {"detected", "rejected"}


class TestJobs:
    def test_stats_retry_and_clear(self, client, services, team_id, suggestion_id):
        client.post(
            f"/api/teams/{team_id}/suggestions/{suggestion_id}/approve", json={"actor_id": "U_ALICE"}
        )
        job = services.job_queue.lease("w")[0]
        services.job_queue.fail(job.id, "w", "boom", retryable=False)

        assert client.get(f"/api/teams/{team_id}/jobs/stats").json()["failed"] == 1
        assert [j["id"] for j in client.get(f"/api/teams/{team_id}/jobs/failed").json()] == [job.id]
        assert client.post(f"/api/teams/{team_id}/jobs/retry-all").json()["retried"] == 1
        assert services.job_queue.get(job.id).state == JobState.PENDING.value

        services.job_queue.lease("w")
        services.job_queue.fail(job.id, "w", "boom", retryable=False)
        assert client.delete(f"/api/teams/{team_id}/jobs/failed").json()["cleared"] == 1


class TestHealth:
    def test_errors_stats_and_resolve(self, client, services, team_id):
        entry = services.error_monitor.log_sync_failure(team_id, "s-1", "503")

        errors = client.get("/api/health/errors", params={"team_id": team_id}).json()
        assert [e["id"] for e in errors] == [entry.id]
        assert client.get("/api/health/errors/stats").json()["unresolved"] == 1

        resolved = client.post(f"/api/health/errors/{entry.id}/resolve", json={"resolved_by": "U_OPS"})
        assert resolved.json()["resolved"] is True
        assert client.get("/api/health/errors/stats").json()["unresolved"] == 0

    def test_team_and_system_health(self, client, team_id):
        team = client.get(f"/api/health/teams/{team_id}").json()
        system = client.get("/api/health/system").json()

        assert team["jobs"]["pending"] == 0
        assert "workers" in system
        assert client.get("/api/health/teams/missing").status_code == 404


class TestIntegrations:
    def test_connect_status_disconnect(self, client, team_id):
        base = f"/api/teams/{team_id}/integrations"

        connected = client.post(f"{base}/simulated/connect", json={"credentials": {}})
        assert connected.status_code == 200
        assert connected.json()["source_type"] == "simulated"
        assert len(client.get(f"{base}/status").json()) == 1

        assert client.post(f"{base}/simulated/disconnect").json()["disconnected"] is True
        assert client.delete(f"{base}/simulated").json()["removed"] is True
        assert client.get(f"{base}/status").json() == []

    def test_rejected_credentials(self, client, team_id):
        response = client.post(
            f"/api/teams/{team_id}/integrations/simulated/connect",
            json={"credentials": {"auth_error": "invalid_auth"}},
        )
        assert response.status_code == 401

    def test_test_endpoint(self, client, team_id):
        response = client.post(
            f"/api/teams/{team_id}/integrations/simulated/test", json={"credentials": {}}
        )
        assert response.json()["ok"] is True


class TestEvents:
    def test_websocket_receives_approval(self, client, team_id, suggestion_id):
        with client.websocket_connect("/api/events") as websocket:
            client.post(
                f"/api/teams/{team_id}/suggestions/{suggestion_id}/approve",
                json={"actor_id": "U_ALICE"},
            )
            types = {websocket.receive_json()["type"] for _ in range(2)}

        assert "suggestion_approved" in types
