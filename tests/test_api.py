"""
HTTP API tests against the FastAPI app with a mock-model agent.
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import ingest
from flag_impact.agents.llm import BaseLLMClient
from flag_impact.agents.orchestrator import FeatureFlagAgent
from flag_impact.api.dependencies import get_agent
from flag_impact.api.main import app


@pytest.fixture
def agent(mock_llm):
    return FeatureFlagAgent(llm=mock_llm)


@pytest.fixture
def client(agent):
    app.dependency_overrides[get_agent] = lambda: agent
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def create_flag(client, **fields):
    body = {"name": "dark-mode", **fields}
    response = client.post("/api/flags", json=body)
    assert response.status_code == 201
    return response.json()


class TestServiceEndpoints:
    def test_root_describes_service(self, client):
        data = client.get("/").json()

        assert data["name"] == "Feature Flag Impact Analyzer"
        assert data["version"] == "1.0.0"
        assert data["status"] == "healthy"
        assert data["endpoints"]["websocket"] == "/ws"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["dbHealth"] is True
        assert "timestamp" in data

    def test_health_reports_agent_status(self, client):
        create_flag(client)

        data = client.get("/health").json()

        assert data["flagCount"] == 1
        assert data["activeSessions"] == 0
        assert data["llm"] == {"provider": "MockLLMClient", "model": "mock-model"}


class TestFlags:
    def test_empty_list(self, client):
        assert client.get("/api/flags").json() == []

    def test_create_and_list(self, client):
        flag = create_flag(client, description="Dark theme", rolloutPercentage=10, tags=["ui"])

        assert flag["name"] == "dark-mode"
        assert flag["rolloutPercentage"] == 10
        assert flag["targetEnvironment"] == "development"
        assert flag["enabled"] is False
        assert flag["tags"] == ["ui"]

        listed = client.get("/api/flags").json()
        assert [f["id"] for f in listed] == [flag["id"]]

    def test_duplicate_id_conflicts(self, client):
        create_flag(client, id="f1")

        response = client.post("/api/flags", json={"id": "f1", "name": "again"})

        assert response.status_code == 409

    @pytest.mark.parametrize("body", [
        {},
        {"name": "   "},
        {"name": "x", "rolloutPercentage": 101},
        {"name": "x", "targetEnvironment": "qa"},
    ])
    def test_invalid_create_rejected(self, client, body):
        assert client.post("/api/flags", json=body).status_code == 422

    def test_record_change(self, client):
        flag = create_flag(client, id="f1")

        response = client.post("/api/flags/change", json={
            "flagId": "f1",
            "flagName": flag["name"],
            "changeType": "rollout_changed",
            "previousValue": {"rolloutPercentage": 0},
            "newValue": {"rolloutPercentage": 50},
            "changedBy": "alice",
            "environment": "production",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["change"]["changeType"] == "rollout_changed"
        assert data["change"]["changedAt"]
        assert data["prediction"]["flagId"] == "f1"
        assert data["prediction"]["riskLevel"] == "low"

        stored = client.get("/api/flags").json()[0]
        assert stored["rolloutPercentage"] == 50

    def test_change_with_unknown_type_rejected(self, client):
        response = client.post("/api/flags/change", json={"flagId": "f1", "changeType": "renamed"})
        assert response.status_code == 422


class TestMetricsAndAnomalies:
    def test_record_metrics(self, client):
        response = client.post("/api/metrics", json={
            "flagId": "f1",
            "errorRate": 0.5,
            "latencyP50": 40,
            "requestCount": 1000,
        })

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["metrics"]["timestamp"]
        assert data["metrics"]["requestCount"] == 1000

    def test_metrics_require_core_fields(self, client):
        assert client.post("/api/metrics", json={"flagId": "f1"}).status_code == 422

    def test_spike_shows_up_in_anomalies(self, client):
        ingest("f1", [1.0] * 7)

        client.post("/api/metrics", json={"flagId": "f1", "errorRate": 50.0, "latencyP50": 50})

        anomalies = client.get("/api/anomalies").json()
        assert len(anomalies) == 1
        assert anomalies[0]["type"] == "error_spike"
        assert anomalies[0]["severity"] == "critical"
        assert anomalies[0]["resolved"] is False

    def test_resolve_anomaly(self, client):
        ingest("f1", [1.0] * 7)
        client.post("/api/metrics", json={"flagId": "f1", "errorRate": 50.0, "latencyP50": 50})
        anomaly_id = client.get("/api/anomalies").json()[0]["id"]

        response = client.post(f"/api/anomalies/{anomaly_id}/resolve")

        assert response.status_code == 200
        assert response.json()["resolved"] is True
        assert client.get("/api/anomalies").json() == []

    def test_resolve_unknown_anomaly(self, client):
        assert client.post("/api/anomalies/missing/resolve").status_code == 404


class TestAnalysisAndChat:
    def test_analyze_unknown_flag(self, client):
        response = client.post("/api/analyze", json={"flagId": "missing"})

        assert response.status_code == 404
        assert response.json()["detail"] == "Flag not found"

    def test_analyze_flag(self, client):
        create_flag(client, id="f1", rolloutPercentage=20)

        response = client.post("/api/analyze", json={"flagId": "f1"})

        assert response.status_code == 200
        data = response.json()
        assert data["flag"]["id"] == "f1"
        assert data["prediction"]["confidence"] == 0.6

        predictions = client.get("/api/predictions").json()
        assert [p["flagId"] for p in predictions] == ["f1"]

    def test_chat(self, client):
        create_flag(client)

        response = client.post("/api/chat", json={"message": "What is enabled?", "sessionId": "s1"})

        assert response.status_code == 200
        data = response.json()
        assert data["sessionId"] == "s1"
        assert "What is enabled?" in data["message"]
        assert data["context"] == {"flagCount": 1, "anomalyCount": 0, "predictionCount": 0}

    def test_chat_assigns_session(self, client):
        data = client.post("/api/chat", json={"message": "hi"}).json()
        assert data["sessionId"]

    def test_chat_requires_message(self, client):
        assert client.post("/api/chat", json={}).status_code == 422


class TestUnreadableModelNumbers:
    @pytest.fixture
    def agent(self):
        llm = MagicMock(spec=BaseLLMClient)
        llm.complete.return_value = '{"riskLevel": "high", "riskScore": NaN, "confidence": Infinity}'
        return FeatureFlagAgent(llm=llm)

    def test_predictions_stay_readable(self, client):
        create_flag(client, id="f1")
        client.post("/api/analyze", json={"flagId": "f1"})

        response = client.get("/api/predictions")

        assert response.status_code == 200
        prediction = response.json()[0]
        assert prediction["riskLevel"] == "high"
        assert prediction["riskScore"] == 50
        assert prediction["confidence"] == 0.7
