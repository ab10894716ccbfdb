"""
Tests for the HTTP API: NDJSON streaming and health endpoints.
"""

import json

import pytest
from fastapi.testclient import TestClient

from agent.cache import PromptCache
from agent.nodes import ToolExecutionNode
from agent.orchestrator import Orchestrator
from api.app import app
from api.routes import get_orchestrator
from tools.base import ToolCatalog

from conftest import FakeModels, ScriptedModel, text, user


@pytest.fixture
def client_with_model():
    model = ScriptedModel()
    catalog = ToolCatalog()
    orchestrator = Orchestrator(
        catalog=catalog,
        models=FakeModels(model),
        prompts=PromptCache(capacity=10),
        tool_node=ToolExecutionNode(catalog, backoff_base=0, backoff_max=0),
    )
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app), model
    app.dependency_overrides.clear()


class TestOrchestrateEndpoint:
    """Test POST /orchestrate."""

    def test_streams_ndjson_events(self, client_with_model):
        client, model = client_with_model
        model.add(text("Hello "), text("there!"))

        response = client.post("/orchestrate", json={"messages": [user("hi")]})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        lines = [json.loads(line) for line in response.text.splitlines() if line]
        types = [line["type"] for line in lines]
        assert types == [
            "agent-header", "status", "text-start",
            "text-delta", "text-delta", "text-end", "status", "final",
        ]
        assert lines[0]["displayName"] == "Dial0 Assistant"
        assert lines[-1]["state"]["messages"][-1]["content"] == "Hello there!"

    def test_agent_switch_serialises_from_key(self, client_with_model):
        client, model = client_with_model
        model.add(text("Let's fix that."))

        response = client.post("/orchestrate", json={"messages": [user("my wifi is down")]})
        first = json.loads(response.text.splitlines()[0])

        assert first["type"] == "agent-switch"
        assert first["from"] == "router"
        assert first["to"] == "support"
        assert first["previousTurnCount"] == 0

    def test_stream_error_reported_as_last_line(self, client_with_model):
        client, model = client_with_model
        model.add(RuntimeError("provider down"))

        response = client.post("/orchestrate", json={"messages": [user("hi")]})
        last = json.loads(response.text.splitlines()[-1])

        assert last == {"type": "error", "message": "provider down"}

    def test_auth_token_never_streamed(self, client_with_model):
        client, model = client_with_model
        model.add(text("Hello!"))

        response = client.post("/orchestrate", json={
            "messages": [user("hi")],
            "sharedSecrets": {"issueId": "i-1", "authToken": "SECRET-TOKEN"},
        })

        assert "SECRET-TOKEN" not in response.text
        final = json.loads(response.text.splitlines()[-1])
        assert final["state"]["sharedSecrets"]["issueId"] == "i-1"
        assert "authToken" not in final["state"]["sharedSecrets"]

    def test_failure_before_first_event_is_500(self):
        class BrokenOrchestrator:
            async def run(self, request):
                raise RuntimeError("catalog unavailable")
                yield

        app.dependency_overrides[get_orchestrator] = lambda: BrokenOrchestrator()
        try:
            response = TestClient(app).post("/orchestrate", json={"messages": [user("hi")]})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json()["detail"] == "catalog unavailable"

    def test_invalid_body_rejected(self, client_with_model):
        client, _ = client_with_model
        response = client.post("/orchestrate", json={"messages": [{"role": "robot", "content": "x"}]})
        assert response.status_code == 422


class TestHealth:
    """Test health and root endpoints."""

    def test_health(self):
        response = TestClient(app).get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self):
        response = TestClient(app).get("/")
        assert response.json()["status"] == "operational"
