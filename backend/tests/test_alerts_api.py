"""
tests/test_alerts_api.py
────────────────────────
Alert listing, summary, acknowledgement and per-gauge deletion.
"""
from conftest import months_ago


async def _seed(client, gauge_payload):
    # G-FULL: capacity/high, G-OLD: calibration/high, G-OK: nothing
    for payload in (
        gauge_payload(gauge_id="G-FULL", produced_quantity=1000),
        gauge_payload(gauge_id="G-OLD", last_calibration_date=months_ago(14).isoformat()),
        gauge_payload(gauge_id="G-OK"),
    ):
        response = await client.post("/api/gauges", json=payload)
        assert response.status_code == 201, response.text


async def test_list_and_filter(client, gauge_payload):
    await _seed(client, gauge_payload)

    alerts = (await client.get("/api/alerts")).json()
    assert sorted(a["gauge_id"] for a in alerts) == ["G-FULL", "G-OLD"]

    capacity = (await client.get("/api/alerts", params={"alert_type": "capacity"})).json()
    assert [a["gauge_id"] for a in capacity] == ["G-FULL"]

    assert (await client.get("/api/alerts", params={"severity": "low"})).json() == []
    assert (await client.get("/api/alerts", params={"severity": "urgent"})).status_code == 422


async def test_summary(client, gauge_payload):
    await _seed(client, gauge_payload)
    summary = (await client.get("/api/alerts/summary")).json()
    assert summary["total"] == 2
    assert summary["unacknowledged"] == 2
    assert summary["by_severity"]["high"] == 2
    assert summary["by_type"] == {"capacity": 1, "calibration": 1}


async def test_acknowledge(client, gauge_payload):
    await _seed(client, gauge_payload)
    alert = (await client.get("/api/alerts", params={"gauge_id": "G-FULL"})).json()[0]

    response = await client.put(f"/api/alerts/{alert['alert_id']}/acknowledge")
    assert response.status_code == 200
    body = response.json()
    assert body["acknowledged"] is True
    assert body["acknowledged_by"] == "tester"
    assert body["acknowledged_at"] is not None

    pending = (await client.get("/api/alerts", params={"acknowledged": False})).json()
    assert [a["gauge_id"] for a in pending] == ["G-OLD"]


async def test_acknowledge_unknown(client):
    assert (await client.put("/api/alerts/does-not-exist/acknowledge")).status_code == 404


async def test_delete_alerts_for_gauge(client, gauge_payload):
    await _seed(client, gauge_payload)
    response = await client.delete("/api/alerts/gauge/G-OLD")
    assert response.status_code == 200
    assert response.json()["deleted_count"] == 1
    assert (await client.get("/api/alerts", params={"gauge_id": "G-OLD"})).json() == []
    # the gauge itself survives
    assert (await client.get("/api/gauges/G-OLD")).status_code == 200
