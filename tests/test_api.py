# tests/test_api.py
import pytest
from fastapi.testclient import TestClient

from app.main import _handle_frame, create_app
from app.realtime.hub import BroadcastHub


@pytest.fixture
def client(settings, notifications):
    with TestClient(create_app(settings, notifications=notifications)) as client:
        yield client


def container(client):
    return client.app.state.container


EMAIL_JOB = {
    "category": "email",
    "payload": {
        "type": "order-confirmation",
        "to": "guest@example.com",
        "subject": "Order Confirmed #1042",
        "data": {"order_number": "1042"},
    },
}


# ==========================
# Root & health
# ==========================

def test_root(client):
    body = client.get("/").json()
    assert body["websocket"] == "/ws"
    assert body["environment"] == "development"


def test_health_reports_each_component(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["database"] == "healthy"
    assert body["queue_database"] == "healthy"
    assert body["notifications"] == "healthy"
    assert body["connections"] == 0
    assert set(body["jobs"]) == {"email", "sms", "inventory", "reports", "scheduled"}


# ==========================
# Jobs
# ==========================

def test_enqueue_and_inspect_job(client):
    resp = client.post("/api/jobs", json=EMAIL_JOB)

    assert resp.status_code == 201
    created = resp.json()
    assert created["category"] == "email"
    assert created["status"] == "waiting"

    job = client.get(f"/api/jobs/{created['job_id']}").json()
    assert job["status"] == "waiting"
    assert job["attempt"] == 0
    assert job["payload"]["to"] == ["guest@example.com"]

    counts = client.get("/api/jobs").json()["counts"]
    assert counts["email"] == {"waiting": 1}


def test_invalid_payload_is_rejected(client):
    resp = client.post("/api/jobs", json={"category": "sms", "payload": {"type": "order-status", "to": []}})

    assert resp.status_code == 422
    assert resp.json()["error"] == "Invalid sms payload"
    assert client.get("/api/jobs").json()["counts"]["sms"] == {}


def test_unknown_category_is_rejected(client):
    resp = client.post("/api/jobs", json={"category": "fax", "payload": {"type": "general"}})
    assert resp.status_code == 422


def test_missing_job_is_404(client):
    assert client.get("/api/jobs/nope").status_code == 404
    assert client.delete("/api/jobs/nope").status_code == 404


def test_cancel_waiting_job(client):
    job_id = client.post("/api/jobs", json=EMAIL_JOB).json()["job_id"]

    assert client.delete(f"/api/jobs/{job_id}").status_code == 204
    assert client.get(f"/api/jobs/{job_id}").status_code == 404


def test_cancel_active_job_conflicts(client):
    job_id = client.post("/api/jobs", json=EMAIL_JOB).json()["job_id"]
    client.portal.call(container(client).dispatcher.claim_next, "email", "w1", 60)

    resp = client.delete(f"/api/jobs/{job_id}")

    assert resp.status_code == 409
    assert resp.json()["detail"] == {"status": "active"}


# ==========================
# Inventory
# ==========================

def test_deduction_without_recipes(client):
    resp = client.post("/api/inventory/deductions", json={
        "order_id": "ORD-1",
        "location_id": "1",
        "items": [{"item_id": "soda", "quantity": 2}],
    })

    assert resp.status_code == 200
    body = resp.json()
    assert body["fully_applied"] is True
    assert body["applied"] == []
    assert body["skipped_items"] == ["soda"]


def test_deduction_requires_items(client):
    resp = client.post("/api/inventory/deductions", json={"order_id": "ORD-1", "location_id": "1", "items": []})
    assert resp.status_code == 422


# ==========================
# Realtime
# ==========================

def test_publish_rejects_bad_room(client):
    resp = client.post("/api/events/publish", json={"room": "garage:1", "event": "order:created"})
    assert resp.status_code == 422


def test_websocket_room_subscription(client):
    with client.websocket_connect("/ws") as ws:
        hello = ws.receive_json()
        assert hello["event"] == "connected"

        ws.send_json({"action": "join", "room": "kitchen-station:5"})
        assert ws.receive_json() == {"event": "joined", "room": "kitchen-station:5", "payload": {}}

        resp = client.post("/api/events/publish", json={
            "room": "kitchen-station:5",
            "event": "kitchen:new-order",
            "payload": {"kitchen_order_id": "KO-1"},
        })
        assert resp.json() == {"room": "kitchen-station:5", "event": "kitchen:new-order", "delivered": 1}
        assert ws.receive_json() == {
            "event": "kitchen:new-order",
            "room": "kitchen-station:5",
            "payload": {"kitchen_order_id": "KO-1"},
        }

        ws.send_json({"action": "leave", "room": "kitchen-station:5"})
        assert ws.receive_json()["payload"] == {"was_member": True}

        # Not a member any more
        resp = client.post("/api/events/publish", json={"room": "kitchen-station:5", "event": "kitchen:order-bumped"})
        assert resp.json()["delivered"] == 0


def test_broadcast_reaches_connections_without_rooms(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        resp = client.post("/api/events/broadcast", json={
            "event": "system:notification",
            "payload": {"type": "maintenance", "message": "Back in 5", "severity": "warning"},
        })
        assert resp.json() == {"room": None, "event": "system:notification", "delivered": 1}
        assert ws.receive_json() == {
            "event": "system:notification",
            "room": None,
            "payload": {"type": "maintenance", "message": "Back in 5", "severity": "warning"},
        }


def test_websocket_bad_frames(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        ws.send_text("not json")
        assert ws.receive_json()["event"] == "error"

        ws.send_json({"action": "join", "room": "basement:1"})
        error = ws.receive_json()
        assert error["event"] == "error"
        assert "basement" in error["payload"]["message"]

        ws.send_json({"action": "dance"})
        assert ws.receive_json()["payload"] == {"message": "unknown action 'dance'"}


async def test_frames_after_hub_dropped_connection_end_the_loop():
    hub = BroadcastHub()

    async def broken_send(envelope):
        raise ConnectionResetError("peer gone")

    connection_id = await hub.connect(broken_send)
    assert _handle_frame(hub, connection_id, '{"action": "join", "room": "location:1"}')
    await hub.flush()

    # The failed "joined" ack purged the connection
    assert hub.connection_count == 0
    assert _handle_frame(hub, connection_id, '{"action": "leave", "room": "location:1"}') is False
    assert _handle_frame(hub, connection_id, "not json") is False
    await hub.close()
