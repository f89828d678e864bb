import datetime

from fastapi.testclient import TestClient

from conftest import make_rule, seed_registry
from serra_automation.core.db import SessionLocal, engine
from serra_automation.main import create_app
from serra_automation.models import Base
from serra_automation.models.device import Device


def _client() -> TestClient:
    app = create_app()
    return TestClient(app)


def _seed() -> str:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        if db.get(Device, "dev-1") is None:
            seed_registry(db)
        rule = make_rule(db, f"Ventilation {datetime.datetime.now().isoformat()}", priority=10, groups=[[("temp-1", "gt", 30)]])
        return rule.id


def test_post_reading_runs_engine_and_lists_history():
    rule_id = _seed()
    ts = datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)
    with _client() as client:
        resp = client.post(
            "/api/v1/readings",
            json={"device_id": "dev-1", "sensor_id": "temp-1", "value": 35, "timestamp_utc": ts.isoformat()},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["duplicate"] is False
        assert sum(body["outcomes"].values()) == body["rules_considered"]

        again = client.post(
            "/api/v1/readings",
            json={"device_id": "dev-1", "sensor_id": "temp-1", "value": 35, "timestamp_utc": ts.isoformat()},
        )
        assert again.json()["duplicate"] is True

        history = client.get(f"/api/v1/rules/{rule_id}/executions", params={"page_size": 10})
        assert history.status_code == 200
        assert history.headers["X-Total-Count"] == str(history.json()["total"])
        items = history.json()["items"]
        assert len(items) == 1
        assert items[0]["execution_status"] in {"success", "skipped"}

        state = client.get(f"/api/v1/rules/{rule_id}/state")
        assert state.status_code == 200
        assert state.json()["trigger_count"] == (1 if items[0]["execution_status"] == "success" else 0)


def test_unknown_sensor_is_404_and_wrong_device_is_422():
    _seed()
    ts = datetime.datetime.now(datetime.timezone.utc).isoformat()
    with _client() as client:
        missing = client.post("/api/v1/readings", json={"device_id": "dev-1", "sensor_id": "nope", "value": 1, "timestamp_utc": ts})
        wrong = client.post("/api/v1/readings", json={"device_id": "dev-2", "sensor_id": "temp-1", "value": 1, "timestamp_utc": ts})

    assert missing.status_code == 404
    assert wrong.status_code == 422


def test_history_for_unknown_rule_is_404():
    with _client() as client:
        resp = client.get("/api/v1/rules/does-not-exist/executions")

    assert resp.status_code == 404


def test_health_reports_database():
    with _client() as client:
        resp = client.get("/api/v1/health")

    assert resp.status_code == 200
    assert resp.json()["database"] is True
    assert resp.json()["mqtt_connected"] is None
