"""
tests/test_gauges_api.py
────────────────────────
Gauge CRUD endpoints, alert side effects and the audit trail.
"""
import pytest

from app import auth
from app.main import app
from app.models import auth as model_auth
from app.notifications import ALERT_RAISED, get_notifier
from conftest import months_ago


async def _create(client, payload):
    response = await client.post("/api/gauges", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


class RecordingNotifier:
    def __init__(self):
        self.events = []

    async def notify(self, event):
        self.events.append(event)


class TestCreate:
    async def test_create_computes_derived_fields(self, client, gauge_payload):
        body = await _create(client, gauge_payload())
        assert body["gauge_id"] == "G-100"
        assert body["status"] == "safe"
        assert body["remaining_capacity"] == 900
        assert body["capacity_utilization"] == 10.0
        assert body["months_until_exhaustion"] == 45
        assert body["last_modified_by"] == "tester"

    async def test_duplicate_id_conflicts(self, client, gauge_payload):
        await _create(client, gauge_payload())
        response = await client.post("/api/gauges", json=gauge_payload())
        assert response.status_code == 409

    @pytest.mark.parametrize("overrides", [
        {"produced_quantity": 1200},
        {"max_capacity": 0},
        {"calibration_frequency": 0},
        {"produced_quantity": -1},
        {"last_calibration_date": "yesterday"},
        {"gauge_id": ""},
    ])
    async def test_invalid_payload_rejected(self, client, gauge_payload, overrides):
        response = await client.post("/api/gauges", json=gauge_payload(**overrides))
        assert response.status_code == 422
        assert (await client.get("/api/gauges")).json()["total"] == 0

    async def test_full_gauge_raises_capacity_alert(self, client, gauge_payload):
        body = await _create(client, gauge_payload(produced_quantity=1000))
        assert body["status"] == "overdue"

        alerts = (await client.get("/api/gauges/G-100/alerts")).json()
        assert [(a["alert_type"], a["severity"]) for a in alerts] == [("capacity", "high")]
        assert "1000/1000" in alerts[0]["message"]

    async def test_high_alert_is_notified(self, client, gauge_payload):
        notifier = RecordingNotifier()
        app.dependency_overrides[get_notifier] = lambda: notifier

        await _create(client, gauge_payload(produced_quantity=1000))
        await _create(client, gauge_payload(gauge_id="G-101", produced_quantity=850))

        assert [e.type for e in notifier.events] == [ALERT_RAISED]
        assert notifier.events[0].source == "G-100"
        assert notifier.events[0].payload["severity"] == "high"

    async def test_create_is_audited(self, client, gauge_payload):
        await _create(client, gauge_payload())
        entries = (await client.get("/api/audit", params={"gauge_id": "G-100"})).json()
        assert [e["action"] for e in entries] == ["create"]
        assert entries[0]["new_values"]["max_capacity"] == 1000
        assert entries[0]["user"] == "tester"


class TestRead:
    async def test_unknown_gauge_404(self, client):
        assert (await client.get("/api/gauges/NOPE")).status_code == 404
        assert (await client.get("/api/gauges/NOPE/alerts")).status_code == 404

    async def test_list_filters_sort_and_pages(self, client, gauge_payload):
        await _create(client, gauge_payload(gauge_id="A-1", produced_quantity=100))
        await _create(client, gauge_payload(gauge_id="B-2", produced_quantity=850, gauge_type="Torque Wrench"))
        await _create(client, gauge_payload(gauge_id="C-3", produced_quantity=1000))

        near = (await client.get("/api/gauges", params={"status": "near_limit"})).json()
        assert [g["gauge_id"] for g in near["data"]] == ["B-2"]

        torque = (await client.get("/api/gauges", params={"search": "torque"})).json()
        assert [g["gauge_id"] for g in torque["data"]] == ["B-2"]

        by_use = (await client.get("/api/gauges", params={"sort_by": "capacity_utilization", "sort_order": "desc"})).json()
        assert [g["gauge_id"] for g in by_use["data"]] == ["C-3", "B-2", "A-1"]

        page = (await client.get("/api/gauges", params={"limit": 2, "page": 2})).json()
        assert page["total"] == 3
        assert page["pages"] == 2
        assert [g["gauge_id"] for g in page["data"]] == ["C-3"]

    async def test_bad_sort_field(self, client):
        assert (await client.get("/api/gauges", params={"sort_by": "password"})).status_code == 400


class TestUpdate:
    async def test_crossing_near_limit_creates_alert(self, client, gauge_payload):
        await _create(client, gauge_payload(produced_quantity=700))
        response = await client.put("/api/gauges/G-100", json={"produced_quantity": 850})
        assert response.status_code == 200
        assert response.json()["status"] == "near_limit"

        alerts = (await client.get("/api/gauges/G-100/alerts")).json()
        assert [(a["alert_type"], a["severity"]) for a in alerts] == [("capacity", "medium")]

    async def test_over_capacity_update_is_accepted_as_overdue(self, client, gauge_payload):
        await _create(client, gauge_payload(produced_quantity=900))
        response = await client.put("/api/gauges/G-100", json={"produced_quantity": 1100})
        assert response.status_code == 200
        assert response.json()["status"] == "overdue"
        assert response.json()["remaining_capacity"] == -100

    async def test_invalid_update_leaves_gauge_unchanged(self, client, gauge_payload):
        await _create(client, gauge_payload())
        response = await client.put("/api/gauges/G-100", json={"max_capacity": -5})
        assert response.status_code == 422
        assert (await client.get("/api/gauges/G-100")).json()["max_capacity"] == 1000

    async def test_update_unknown_gauge(self, client):
        assert (await client.put("/api/gauges/NOPE", json={"produced_quantity": 1})).status_code == 404

    async def test_update_is_audited_with_before_and_after(self, client, gauge_payload):
        await _create(client, gauge_payload())
        await client.put("/api/gauges/G-100", json={"monthly_usage": 75})
        entries = (await client.get("/api/audit", params={"action": "update"})).json()
        assert len(entries) == 1
        assert entries[0]["old_values"]["monthly_usage"] == 20
        assert entries[0]["new_values"]["monthly_usage"] == 75


class TestCalibrate:
    async def test_calibration_clears_overdue_alert(self, client, gauge_payload):
        body = await _create(client, gauge_payload(last_calibration_date=months_ago(13).isoformat()))
        assert body["status"] == "overdue"
        alerts = (await client.get("/api/gauges/G-100/alerts")).json()
        assert [(a["alert_type"], a["severity"]) for a in alerts] == [("calibration", "high")]

        response = await client.post("/api/gauges/G-100/calibrate")
        assert response.status_code == 200
        assert response.json()["status"] == "safe"

        alerts = (await client.get("/api/gauges/G-100/alerts")).json()
        assert len(alerts) == 1
        assert alerts[0]["acknowledged"] is True
        assert alerts[0]["acknowledged_by"] == "tester"

    async def test_calibration_with_explicit_date(self, client, gauge_payload):
        await _create(client, gauge_payload())
        calibrated_on = months_ago(1).isoformat()
        response = await client.post("/api/gauges/G-100/calibrate", json={"last_calibration_date": calibrated_on})
        assert response.json()["last_calibration_date"] == calibrated_on

        entries = (await client.get("/api/audit", params={"action": "calibrate"})).json()
        assert entries[0]["new_values"]["last_calibration_date"] == calibrated_on


class TestDelete:
    async def test_delete_removes_gauge_and_alerts(self, client, gauge_payload):
        await _create(client, gauge_payload(produced_quantity=1000))
        response = await client.delete("/api/gauges/G-100")
        assert response.status_code == 200
        assert response.json()["alerts_deleted"] == 1

        assert (await client.get("/api/gauges/G-100")).status_code == 404
        assert (await client.get("/api/alerts", params={"gauge_id": "G-100"})).json() == []

        entries = (await client.get("/api/audit", params={"gauge_id": "G-100"})).json()
        assert entries[0]["action"] == "delete"
        assert entries[0]["old_values"]["gauge_id"] == "G-100"

    async def test_delete_unknown(self, client):
        assert (await client.delete("/api/gauges/NOPE")).status_code == 404


class TestPermissions:
    async def test_viewer_cannot_edit(self, client, gauge_payload):
        viewer = model_auth.User(id=2, username="viewer", role=auth.Role.VIEWER, is_active=True)
        app.dependency_overrides[auth.get_current_user] = lambda: viewer

        assert (await client.get("/api/gauges")).status_code == 200
        assert (await client.post("/api/gauges", json=gauge_payload())).status_code == 403
        assert (await client.delete("/api/gauges/G-100")).status_code == 403
