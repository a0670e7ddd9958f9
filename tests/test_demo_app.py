import importlib.util
from pathlib import Path

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient  # noqa: E402

APP_PATH = Path(__file__).resolve().parent.parent / "examples" / "two-minute-demo" / "app.py"


@pytest.fixture(scope="module")
def client():
    spec = importlib.util.spec_from_file_location("creatormet_demo_app", APP_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return TestClient(module.app)


def test_demo_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_demo_metrics_endpoints(client):
    sessions = client.get("/api/sessions", params={"days": 14}).json()
    questions = client.get("/api/questions", params={"days": 14, "limit": 3}).json()
    cost = client.get("/api/cost", params={"days": 14}).json()
    engagement = client.get("/api/engagement").json()

    assert sessions["overview"]["total_sessions"] > 0
    assert len(questions["questions"]) <= 3
    assert abs(sum(cost["by_model"].values()) - cost["total"]) < 1e-9
    assert 0 <= engagement["overall"]["total"] <= 100
    assert client.get("/api/volume").status_code == 200
    assert client.get("/api/quality").status_code == 200
    assert client.get("/api/sessions/students").status_code == 200


def test_demo_active_users_and_retention(client):
    active = client.get("/api/active-users", params={"days": 14}).json()
    retention = client.get("/api/retention").json()

    assert active["mau"] >= active["dau"]
    assert len(active["active_users"]) == 15
    assert len(retention["cohorts"]) >= 1
    assert all(cohort["week0"] == 100 for cohort in retention["cohorts"])
    assert 0 <= retention["retention_rate"] <= 100


def test_demo_trend(client):
    assert client.get("/api/trend", params={"current": 100, "previous": 50}).json() == {
        "direction": "up",
        "percentage": 100.0,
    }
    assert client.get("/api/trend", params={"current": 5000, "previous": 1}).json()["percentage"] == 999.0
    assert client.get("/api/trend", params={"current": 1, "previous": -1}).status_code == 400
