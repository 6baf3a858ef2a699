"""Tests for the HTTP surface (api/) using FastAPI's TestClient."""

import asyncio

import pytest
from conftest import FakeModelClient
from fastapi.testclient import TestClient

from api.config import Settings
from api.main import create_app
from api.state import build_state

HEADERS = {"X-User-Id": "user-1"}


class _TestSettings(Settings):
    STORAGE_PATH = ""
    ALLOWED_MODELS = ["google/gemini-flash-1.5", "openai/gpt-4o-mini", "anthropic/claude-3.5-sonnet"]
    BACKGROUND_MINING = False


@pytest.fixture
def fake():
    return FakeModelClient()


@pytest.fixture
def state(fake):
    return build_state(_TestSettings(), client=fake)


@pytest.fixture
def client(state):
    with TestClient(create_app(state)) as test_client:
        yield test_client


def _correct(client, n=1):
    for _ in range(n):
        resp = client.post(
            "/api/learning/corrections",
            json={
                "model_id": "openai/gpt-4o-mini",
                "original": "The capital of Germany is Paris",
                "corrected": "The capital of Germany is Berlin",
                "feedback": "incorrect",
            },
            headers=HEADERS,
        )
        assert resp.status_code == 200


# =========================================================================
# Arena
# =========================================================================


class TestArenaRoutes:
    def test_chat_appends_history(self, client, state, fake):
        resp = client.post(
            "/api/arena/chat",
            json={"content": "Hello", "mode": "COLLABORATIVE", "chat_id": "c1"},
            headers=HEADERS,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["chat_id"] == "c1"
        assert len(body["model_ids"]) == 3
        assert body["tokens"] == {"input": 30, "output": 60}
        assert body["metadata"]["mode"] == "COLLABORATIVE"

        turns = state.history.get_recent_turns("c1", 10)
        assert [t.role for t in turns] == ["user", "assistant"]
        assert turns[1].content == body["response"]

    def test_follow_up_sends_history(self, client, fake):
        client.post("/api/arena/chat", json={"content": "First", "chat_id": "c2"}, headers=HEADERS)
        client.post("/api/arena/chat", json={"content": "Second", "chat_id": "c2"}, headers=HEADERS)

        messages = fake.calls[-1]["messages"]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[1]["content"] == "First"

    def test_blank_content_is_400(self, client):
        resp = client.post("/api/arena/chat", json={"content": " "}, headers=HEADERS)
        assert resp.status_code == 400

    def test_unknown_mode_is_400(self, client):
        resp = client.post("/api/arena/chat", json={"content": "hi", "mode": "DUEL"}, headers=HEADERS)
        assert resp.status_code == 400

    def test_missing_user_header(self, client):
        resp = client.post("/api/arena/chat", json={"content": "hi"})
        assert resp.status_code == 401

    def test_models(self, client):
        resp = client.get("/api/arena/models", headers=HEADERS)
        assert [m["id"] for m in resp.json()["models"]] == _TestSettings.ALLOWED_MODELS


# =========================================================================
# Learning + rules
# =========================================================================


class TestLearningRoutes:
    def test_feedback_and_statistics(self, client):
        resp = client.post(
            "/api/learning/feedback",
            json={"model_id": "openai/gpt-4o-mini", "is_positive": True},
            headers=HEADERS,
        )
        assert resp.json()["type"] == "FEEDBACK"

        client.post(
            "/api/learning/reports",
            json={"model_id": "openai/gpt-4o-mini", "reason": "Rude tone"},
            headers=HEADERS,
        )
        client.post(
            "/api/learning/regenerations",
            json={"model_id": "openai/gpt-4o-mini", "original": "old"},
            headers=HEADERS,
        )

        stats = client.get("/api/learning/statistics").json()
        assert stats["total_events"] == 3
        assert stats["events_by_type"]["REPORT"] == 1

    def test_patterns(self, client):
        _correct(client, 2)
        patterns = client.get("/api/learning/patterns").json()["patterns"]
        assert patterns[0]["pattern_key"] == "paris"
        assert patterns[0]["occurrences"] == 2


class TestRuleRoutes:
    def test_propose_approve_and_inject(self, client, fake):
        _correct(client, 3)
        proposed = client.get("/api/rules/proposed").json()["rules"]
        assert len(proposed) == 1
        assert proposed[0]["category"] == "FACTUAL"
        assert proposed[0]["confidence"] == pytest.approx(0.3)

        rule_id = proposed[0]["id"]
        resp = client.post(f"/api/rules/{rule_id}/approve", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json()["active_rule"]["approved_by"] == "user-1"

        assert client.post(f"/api/rules/{rule_id}/approve", headers=HEADERS).status_code == 409

        instructions = client.get("/api/learning/instructions").json()
        assert instructions["active_rules"] == 1

        client.post("/api/arena/chat", json={"content": "Hello"}, headers=HEADERS)
        system = fake.calls[-1]["messages"][0]["content"]
        assert instructions["instructions"] in system

    def test_reject(self, client):
        _correct(client, 3)
        rule_id = client.get("/api/rules/proposed").json()["rules"][0]["id"]

        resp = client.post(f"/api/rules/{rule_id}/reject", json={"reason": ""}, headers=HEADERS)
        assert resp.status_code == 400

        resp = client.post(f"/api/rules/{rule_id}/reject", json={"reason": "dup"}, headers=HEADERS)
        assert resp.json()["rule"]["status"] == "REJECTED"
        assert client.get("/api/rules/proposed").json()["rules"] == []

    def test_unknown_rule_is_404(self, client):
        assert client.post("/api/rules/nope/approve", headers=HEADERS).status_code == 404
        assert client.delete("/api/rules/active/nope", headers=HEADERS).status_code == 404

    def test_deactivate_and_check(self, client):
        _correct(client, 3)
        rule_id = client.get("/api/rules/proposed").json()["rules"][0]["id"]
        active_id = client.post(f"/api/rules/{rule_id}/approve", headers=HEADERS).json()[
            "active_rule"
        ]["id"]

        check = client.post("/api/rules/check", json={"content": "Paris is the capital of Germany"})
        assert check.json()["valid"] is False

        assert client.delete(f"/api/rules/active/{active_id}", headers=HEADERS).status_code == 200
        assert client.get("/api/rules/active").json()["rules"] == []

        check = client.post("/api/rules/check", json={"content": "Paris is the capital of Germany"})
        assert check.json() == {"valid": True, "violations": []}

    def test_rule_decisions_run_off_the_event_loop(self, client, state, monkeypatch):
        _correct(client, 3)
        rule_id = client.get("/api/rules/proposed").json()["rules"][0]["id"]
        on_loop = {}

        def _record(name):
            method = getattr(state.engine, name)

            def wrapper(*args, **kwargs):
                try:
                    asyncio.get_running_loop()
                    on_loop[name] = True
                except RuntimeError:
                    on_loop[name] = False
                return method(*args, **kwargs)

            monkeypatch.setattr(state.engine, name, wrapper)

        for name in ("approve_rule", "deactivate_rule", "find_rule_violations"):
            _record(name)

        active_id = client.post(f"/api/rules/{rule_id}/approve", headers=HEADERS).json()[
            "active_rule"
        ]["id"]
        client.post("/api/rules/check", json={"content": "Paris is the capital of Germany"})
        client.delete(f"/api/rules/active/{active_id}", headers=HEADERS)

        assert on_loop == {
            "approve_rule": False,
            "deactivate_rule": False,
            "find_rule_violations": False,
        }
