import pytest
from fastapi.testclient import TestClient

from idea_recommender.api.main import app


@pytest.fixture
def client(engine):
    return TestClient(app)


@pytest.fixture
def catalog(add_idea, add_behavior):
    add_idea("hot", category="ai", community="MachineLearning")
    add_idea("warm", category="devops")
    add_behavior("a", "hot", "like")
    add_behavior("b", "hot", "like")
    add_behavior("a", "warm", "like")


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"db": True, "status": "ok"}
    assert r.headers["X-Correlation-ID"]


def test_correlation_id_is_echoed(client):
    r = client.get("/health", headers={"X-Correlation-ID": "req-123"})
    assert r.headers["X-Correlation-ID"] == "req-123"


def test_recommendations_for_new_user(client, catalog):
    r = client.get("/recommendations", params={"user_id": "newbie", "strategy": "collaborative", "limit": 5})

    assert r.status_code == 200
    body = r.json()
    assert [rec["idea"]["id"] for rec in body] == ["hot", "warm"]
    assert body[0]["strategy"] == "trending"
    assert body[0]["supporting_evidence"] == ["2 likes, 0 bookmarks, 0 generated PRDs"]


def test_recommendation_request_validation(client):
    assert client.get("/recommendations", params={"user_id": "u", "strategy": "fallback"}).status_code == 422
    assert client.get("/recommendations", params={"user_id": "u", "strategy": "magic"}).status_code == 422
    assert client.get("/recommendations", params={"user_id": "u", "diversity_weight": 2}).status_code == 422


def test_track_behavior(client, catalog):
    r = client.post("/behaviors", json={"user_id": "u1", "idea_id": "hot", "action_type": "bookmark", "duration": 12.5})

    assert r.status_code == 202
    assert r.json()["status"] == "accepted"
    assert r.json()["session_id"]

    bad = client.post("/behaviors", json={"user_id": "u1", "idea_id": "hot", "action_type": "teleport"})
    assert bad.status_code == 422
    assert bad.json()["error"] == "invalid_request"


def test_experiment_flow(client):
    r = client.post("/experiments", json={"name": "hybrid vs trending", "strategy_control": "hybrid",
                                          "strategy_treatment": "trending"})
    assert r.status_code == 201
    exp = r.json()
    assert exp["status"] == "draft"
    exp_id = exp["id"]

    assert client.get(f"/experiments/{exp_id}").json()["name"] == "hybrid vs trending"
    assert client.post(f"/experiments/{exp_id}/status", json={"status": "completed"}).status_code == 409
    assert client.post(f"/experiments/{exp_id}/status", json={"status": "active"}).json()["status"] == "active"
    assert [e["id"] for e in client.get("/experiments", params={"status": "active"}).json()] == [exp_id]

    variant = client.post(f"/experiments/{exp_id}/assign", json={"user_id": "u1"}).json()["variant"]
    assert variant in ("A", "B")
    assert client.post(f"/experiments/{exp_id}/assign", json={"user_id": "u1"}).json()["variant"] == variant

    for v in ("A", "B"):
        r = client.post(f"/experiments/{exp_id}/events",
                        json={"user_id": f"user-{v}", "variant": v, "action": "impression", "idea_id": "hot"})
        assert r.status_code == 202
        assert r.json() == {"status": "accepted"}

    analysis = client.get(f"/experiments/{exp_id}/analysis").json()
    assert {p["variant"] for p in analysis["performance"]} == {"A", "B"}
    assert [t["metric_name"] for t in analysis["statistical_tests"]] == ["ctr", "conversion_rate"]

    report = client.get(f"/experiments/{exp_id}/report").json()
    assert report["experiment_info"]["id"] == exp_id
    assert report["statistical_significance"] is False

    dashboard = client.get("/analytics/dashboard").json()
    assert [e["id"] for e in dashboard["active_experiments"]] == [exp_id]
    assert len(dashboard["statistical_results"][exp_id]) == 2


def test_experiment_errors(client):
    assert client.get("/experiments/missing").status_code == 404
    r = client.post("/experiments", json={"name": "x", "strategy_control": "hybrid",
                                          "strategy_treatment": "hybrid", "traffic_split": 1.5})
    assert r.status_code == 422


def test_metrics_endpoint(client, catalog):
    client.get("/recommendations", params={"user_id": "newbie", "strategy": "trending"})

    r = client.get("/metrics")

    assert r.status_code == 200
    assert "recommendation_requests_total" in r.text
    assert "api_requests_total" in r.text
