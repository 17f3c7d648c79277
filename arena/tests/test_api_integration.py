"""Integration tests for the FastAPI endpoints.

The app is built with deterministic collaborators and an in-memory database,
so no LLM key is needed.
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from arena.app import create_app
from arena.config import Settings
from arena.judge import LLMCallError, LLMJudge
from arena.tests.fakes import FakeAnonymizer, FakeJudge, RecordingMatcher, ScriptedComparator


@pytest.fixture()
def make_client(session_factory):
    """Build a TestClient; keyword arguments replace the default fakes."""
    clients = []

    def _make(**overrides):
        collaborators = {
            "judge": FakeJudge(),
            "comparator": ScriptedComparator("A"),
            "anonymizer": FakeAnonymizer(),
            "matcher": RecordingMatcher(),
            **overrides,
        }
        app = create_app(
            Settings(resume_matching=False),
            session_factory=session_factory,
            **collaborators,
        )
        client = TestClient(app, raise_server_exceptions=True)
        client.__enter__()
        clients.append(client)
        return client, collaborators

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture()
def client(make_client):
    return make_client()


class TestEvaluateEndpoint:
    def test_viable_idea(self, client):
        c, fakes = client
        resp = c.post("/api/evaluate", json={
            "text": "Subscription boxes of rare houseplants",
            "category": "E-commerce", "stage": "Concept",
        })
        assert resp.status_code == 200
        data = resp.json()
        assert data["viability"] == 72
        assert data["excellence"] == 65
        assert data["decision"] == "Go"
        assert data["eligible_for_ranking"] is True
        assert fakes["matcher"].submitted == [(data["idea_id"], 5)]

    def test_unviable_idea(self, make_client):
        c, fakes = make_client(judge=FakeJudge(viability=35, excellence=20))
        data = c.post("/api/evaluate", json={"text": "A weak but long enough idea"}).json()
        assert data["eligible_for_ranking"] is False
        assert fakes["matcher"].submitted == []

    def test_header_sets_owner(self, client, session):
        c, _ = client
        data = c.post("/api/evaluate", json={"text": "Owned idea text here"},
                      headers={"X-User-Id": "alice"}).json()
        from arena.services import get_idea
        assert get_idea(session, data["idea_id"]).user_id == "alice"

    def test_public_idea_uses_anonymizer(self, client):
        c, fakes = client
        resp = c.post("/api/evaluate", json={
            "text": "GreenBox rare plants in Berlin", "is_public": True, "language": "en",
        })
        assert resp.status_code == 200
        assert fakes["anonymizer"].calls == [("GreenBox rare plants in Berlin", "en")]

    @pytest.mark.parametrize("body", [
        {"text": ""},
        {"text": "     "},
        {},
        {"text": "A long enough idea", "language": "fr"},
    ])
    def test_invalid_body(self, client, body):
        c, fakes = client
        assert c.post("/api/evaluate", json=body).status_code == 422
        assert fakes["judge"].calls == []

    def test_too_short(self, client):
        c, fakes = client
        resp = c.post("/api/evaluate", json={"text": "too short"})
        assert resp.status_code == 422
        assert "at least 10 characters" in resp.json()["detail"]
        assert fakes["judge"].calls == []

    def test_non_finite_judge_score(self, make_client):
        llm = MagicMock(model="fake-model")
        llm.call = AsyncMock(return_value={"viability_score": float("nan"), "excellence_score": 50})
        c, _ = make_client(judge=LLMJudge(llm))
        resp = c.post("/api/evaluate", json={"text": "A perfectly fine idea"})
        assert resp.status_code == 502
        assert resp.json()["detail"] == "Evaluation failed, please try again"

    def test_judge_failure(self, make_client):
        c, _ = make_client(judge=FakeJudge(error=LLMCallError("upstream timeout", retryable=True)))
        resp = c.post("/api/evaluate", json={"text": "A perfectly fine idea"})
        assert resp.status_code == 502
        assert resp.json()["detail"] == "Evaluation failed, please try again"
        assert c.get("/api/stats").json()["total_ideas"] == 0

    def test_unknown_idea_id(self, client):
        c, _ = client
        resp = c.post("/api/evaluate", json={"text": "Re-evaluate this one", "idea_id": "missing"})
        assert resp.status_code == 404


class TestCompareEndpoint:
    def test_compare(self, client, make_idea):
        c, _ = client
        a, b = make_idea("Idea alpha"), make_idea("Idea beta")
        resp = c.post("/api/compare", json={"idea_a_id": a.id, "idea_b_id": b.id})
        assert resp.status_code == 200
        data = resp.json()
        assert data["winner"] == "A"
        assert data["elo_changes"]["idea_a"] == {"old": 1500, "new": 1512, "change": 12}
        assert data["elo_changes"]["idea_b"] == {"old": 1500, "new": 1488, "change": -12}
        assert c.get("/api/stats").json()["total_matches"] == 1

    def test_unknown_idea(self, client, make_idea):
        c, _ = client
        a = make_idea()
        resp = c.post("/api/compare", json={"idea_a_id": a.id, "idea_b_id": "nope"})
        assert resp.status_code == 404

    def test_not_ranked(self, client, make_idea):
        c, _ = client
        a, b = make_idea(), make_idea(elo=None, viability=45)
        resp = c.post("/api/compare", json={"idea_a_id": a.id, "idea_b_id": b.id})
        assert resp.status_code == 400

    def test_same_idea(self, client, make_idea):
        c, _ = client
        a = make_idea()
        assert c.post("/api/compare", json={"idea_a_id": a.id, "idea_b_id": a.id}).status_code == 400

    def test_missing_field(self, client):
        c, _ = client
        assert c.post("/api/compare", json={"idea_a_id": "x"}).status_code == 422

    def test_comparator_failure(self, make_client, make_idea):
        a, b = make_idea("Idea alpha"), make_idea("Idea beta")
        c, _ = make_client(comparator=ScriptedComparator(fail_for={b.id}))
        resp = c.post("/api/compare", json={"idea_a_id": a.id, "idea_b_id": b.id})
        assert resp.status_code == 502
        assert resp.json()["detail"] == "Comparison failed, please try again"


class TestTopEndpoint:
    def test_empty(self, client):
        c, _ = client
        assert c.get("/api/top").json() == {"total": 0, "ideas": []}

    def test_privacy_by_viewer(self, client, make_idea):
        c, _ = client
        mine = make_idea("Alice's secret plan", elo=1600, matches=3, user_id="alice")
        make_idea("Bob's plan", elo=1550, matches=3, user_id="bob")

        as_alice = c.get("/api/top", headers={"X-User-Id": "alice"}).json()["ideas"]
        assert as_alice[0]["idea_id"] == mine.id
        assert as_alice[0]["text"] == "Alice's secret plan"
        assert as_alice[0]["is_own"] is True
        assert as_alice[1]["text"] == "Marketplace #002"

        anonymous = c.get("/api/top").json()["ideas"]
        assert anonymous[0]["text"] == "Marketplace #001"
        assert anonymous[0]["is_anonymized"] is True

    def test_limit(self, client, make_idea):
        c, _ = client
        for n in range(4):
            make_idea(f"Idea {n}", elo=1500 + n, matches=3)
        assert c.get("/api/top", params={"limit": 2}).json()["total"] == 2

    @pytest.mark.parametrize("limit", [0, 101, "many"])
    def test_bad_limit(self, client, limit):
        c, _ = client
        assert c.get("/api/top", params={"limit": limit}).status_code == 422

    def test_badge_fields(self, client, make_idea):
        c, _ = client
        make_idea("Solid idea", elo=1560, matches=5)
        entry = c.get("/api/top").json()["ideas"][0]
        assert entry["badge"] == "Silver"
        assert entry["percentile"] == 84
        assert entry["badge_description"]


class TestStatusEndpoints:
    def test_stats(self, client, make_idea):
        c, _ = client
        make_idea("Ranked idea")
        make_idea("Weak idea", elo=None, viability=30)
        data = c.get("/api/stats").json()
        assert data["total_ideas"] == 2
        assert data["ranked_ideas"] == 1
        assert data["ranking_participation_rate"] == 50

    def test_matcher_status(self, client):
        c, _ = client
        data = c.get("/api/matcher").json()
        assert data["running"] is True
        assert data["failed"] == 0
