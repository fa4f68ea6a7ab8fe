"""API tests for the HTTP surface (TestClient, fake completion client, in-memory store)."""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from kumulus.core.database import PersistenceError, append_turn
from kumulus.main import app


@pytest.fixture
def client(memory_db, fake_llm):
    app.state.llm_adapter = fake_llm
    yield TestClient(app)
    app.state.llm_adapter = None


class TestAskAI:

    def test_answer_and_session(self, client):
        resp = client.post("/AskAI", json={"prompt": "hello", "sessionId": "s1"})
        assert resp.status_code == 200
        assert resp.json() == {"answer": "Hello from LeIA.", "sessionId": "s1"}

    def test_session_generated(self, client):
        resp = client.post("/AskAI", json={"prompt": "hello"})
        assert resp.status_code == 200
        assert resp.json()["sessionId"]

    def test_image_only_turn_accepted(self, client, jpeg_data_uri):
        resp = client.post("/AskAI", json={"imageBase64": jpeg_data_uri})
        assert resp.status_code == 200

    def test_malformed_json_is_400(self, client):
        resp = client.post("/AskAI", content="{not json", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400

    def test_missing_body_is_400(self, client):
        resp = client.post("/AskAI")
        assert resp.status_code == 400

    def test_bad_image_is_400(self, client):
        resp = client.post("/AskAI", json={"prompt": "look", "imageBase64": "data:image/jpeg;base64,@@@"})
        assert resp.status_code == 400
        assert "base64" in resp.json()["answer"]

    def test_provider_error_hides_details_by_default(self, client, fake_llm, provider_failure, monkeypatch):
        monkeypatch.delenv("EXPOSE_ERROR_DETAILS", raising=False)
        fake_llm.primary_error = provider_failure
        resp = client.post("/AskAI", json={"prompt": "hello", "sessionId": "s1"})
        assert resp.status_code == 500
        assert "Rate limit" not in resp.json()["answer"]

    def test_provider_error_details_when_enabled(self, client, fake_llm, provider_failure, monkeypatch):
        monkeypatch.setenv("EXPOSE_ERROR_DETAILS", "true")
        fake_llm.primary_error = provider_failure
        resp = client.post("/AskAI", json={"prompt": "hello", "sessionId": "s1"})
        assert resp.status_code == 500
        assert "429" in resp.json()["answer"]

    def test_persistence_failure_still_200(self, client, mocker):
        mocker.patch("kumulus.agent.orchestrator.append_turn", side_effect=PersistenceError("disk full"))
        resp = client.post("/AskAI", json={"prompt": "hello", "sessionId": "s1"})
        assert resp.status_code == 200
        assert resp.json()["answer"] == "Hello from LeIA."

    def test_unconfigured_provider_is_503(self, client):
        app.state.llm_adapter = None
        resp = client.post("/AskAI", json={"prompt": "hello"})
        assert resp.status_code == 503


class TestGetHistory:

    def test_lists_sessions(self, client):
        client.post("/AskAI", json={"prompt": "hello", "sessionId": "s1"})
        resp = client.get("/GetHistory")
        assert resp.status_code == 200
        body = resp.json()
        assert body[0]["id"] == "s1"
        assert body[0]["title"] == "Cloud storage basics"
        assert "lastUpdate" in body[0]

    def test_empty(self, client):
        assert client.get("/GetHistory").json() == []


class TestGetSessionMessages:

    def test_missing_session_id_is_400(self, client):
        assert client.get("/GetSessionMessages").status_code == 400

    def test_unknown_session_is_empty(self, client):
        resp = client.get("/GetSessionMessages", params={"sessionId": "nobody"})
        assert resp.status_code == 200
        assert resp.json() == []

    def test_transcript(self, client):
        append_turn("s1", "hi", "hello")
        resp = client.get("/GetSessionMessages", params={"sessionId": "s1"})
        assert resp.status_code == 200
        row = resp.json()[0]
        assert row["userMessage"] == "hi"
        assert row["aiMessage"] == "hello"
        timestamp = datetime.fromisoformat(row["timestamp"].replace("Z", "+00:00"))
        assert timestamp.utcoffset() == timedelta(0)


class TestDeleteHistory:

    def test_deletes_and_reports_count(self, client):
        append_turn("s1", "a", "b")
        append_turn("s1", "c", "d")
        resp = client.delete("/DeleteHistory", params={"sessionId": "s1"})
        assert resp.status_code == 200
        assert resp.text == "2 messages removed"
        assert client.get("/GetSessionMessages", params={"sessionId": "s1"}).json() == []

    def test_missing_session_id_is_400(self, client):
        assert client.delete("/DeleteHistory").status_code == 400

    def test_store_failure_is_500(self, client, mocker):
        mocker.patch("kumulus.core.session_service.database.delete_session",
                     side_effect=PersistenceError("locked"))
        resp = client.delete("/DeleteHistory", params={"sessionId": "s1"})
        assert resp.status_code == 500


class TestHealth:

    def test_healthy(self, client):
        resp = client.get("/health")
        assert resp.json() == {"status": "healthy", "components": {"llm": "ok", "database": "ok"}}

    def test_llm_ok_when_adapter_configured(self, client):
        app.state.llm_adapter = object()
        assert client.get("/health").json()["components"]["llm"] == "ok"

    def test_degraded_without_llm(self, client):
        app.state.llm_adapter = None
        assert client.get("/health").json()["status"] == "degraded"

    def test_root(self, client):
        assert client.get("/").json()["status"] == "ok"
