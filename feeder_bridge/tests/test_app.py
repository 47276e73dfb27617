import pytest
from fastapi.testclient import TestClient

from conftest import FakeBroker
from feeder_bridge.app import create_app, load_settings
from feeder_bridge.lib.bridge import FeederBridge
from feeder_bridge.lib.errors import DeliveryFailed


@pytest.fixture
def bridge(settings, broker, clock):
    return FeederBridge(settings, broker=broker, clock=clock)


@pytest.fixture
def client(bridge):
    with TestClient(create_app(bridge)) as c:
        yield c


def test_startup_connects_broker(client, broker):
    assert broker.started is True


def test_state_endpoint(client, broker):
    broker.deliver("dispensador/estado", b'{"nivelComida":50,"nivelAgua":80}')
    resp = client.get("/api/state")

    assert resp.status_code == 200
    body = resp.json()
    assert body["foodLevel"] == 50
    assert body["waterLevel"] == 80
    assert body["foodWeight"] is None
    assert body["pumpActive"] is False
    assert body["connected"] is True
    assert body["lastUpdated"].startswith("2024-05-01T12:00:00")


def test_state_endpoint_applies_staleness(client, broker, clock):
    broker.deliver("dispensador/estado", b"{}")
    clock.advance(31)
    assert client.get("/api/state").json()["connected"] is False


def test_confirmations_endpoint(client, broker):
    broker.deliver("dispensador/confirmacion", b"agua:activada")
    broker.deliver("dispensador/confirmacion", b"agua:desactivada")
    body = client.get("/api/confirmations").json()

    assert [c["message"] for c in body] == ["agua:desactivada", "agua:activada"]
    assert all("timestamp" in c for c in body)


def test_health_endpoint(client, broker):
    body = client.get("/api/health").json()
    assert body == {"status": "online", "transportConnected": True, "timestamp": "2024-05-01T12:00:00.000Z"}

    broker.connected = False
    assert client.get("/api/health").json()["transportConnected"] is False


def test_command_endpoint_publishes(client, broker):
    resp = client.post("/api/command", json={"command": "dispensar_comida"})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": 'Command "dispensar_comida" sent'}
    assert ("dispensador/comandos", "dispensar_comida", 1) in broker.published


def test_command_endpoint_accepts_comando_key(client, broker):
    resp = client.post("/api/command", json={"comando": "activar_agua"})
    assert resp.status_code == 200
    assert broker.published[-1][1] == "activar_agua"


def test_command_endpoint_rejects_unknown(client, broker):
    resp = client.post("/api/command", json={"command": "scram"})
    assert resp.status_code == 400
    assert "error" in resp.json()
    assert broker.published == []


def test_command_endpoint_rejects_missing(client, broker):
    resp = client.post("/api/command", json={})
    assert resp.status_code == 400
    assert broker.published == []


def test_command_endpoint_accepts_command_name_key(client, broker):
    resp = client.post("/api/command", json={"commandName": "status"})
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert broker.published == [("dispensador/comandos", "status", 1)]


@pytest.mark.parametrize("body", ["status", [], 5, None])
def test_command_endpoint_rejects_non_object_body(client, broker, body):
    resp = client.post("/api/command", json=body)
    assert resp.status_code == 400
    assert "error" in resp.json()
    assert broker.published == []


def test_command_endpoint_rejects_empty_body(client, broker):
    resp = client.post("/api/command")
    assert resp.status_code == 400
    assert broker.published == []


def test_command_endpoint_delivery_failure(settings, clock):
    broker = FakeBroker(fail=DeliveryFailed("no PUBACK"))
    bridge = FeederBridge(settings, broker=broker, clock=clock)
    with TestClient(create_app(bridge)) as c:
        resp = c.post("/api/command", json={"command": "status"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Error sending command"}
        # the service keeps answering
        assert c.get("/api/health").status_code == 200


def test_websocket_receives_snapshot_then_updates(client, broker):
    broker.deliver("dispensador/estado", b'{"nivelComida":10}')
    with client.websocket_connect("/ws") as ws:
        first = ws.receive_json()
        assert first["event"] == "stateChanged"
        assert first["data"]["foodLevel"] == 10

        broker.deliver("dispensador/estado", b'{"nivelComida":20,"bombaActiva":true}')
        update = ws.receive_json()
        assert update["event"] == "stateChanged"
        assert update["data"]["foodLevel"] == 20
        assert update["data"]["pumpActive"] is True


def test_websocket_disconnect_deregisters(client, bridge):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        assert bridge.notifier.subscriber_count == 1
    # the server side notices the close on its next receive
    for _ in range(50):
        if bridge.notifier.subscriber_count == 0:
            break
        client.get("/api/health")
    assert bridge.notifier.subscriber_count == 0


def test_load_settings_reads_shipped_config():
    settings = load_settings()
    assert settings.state_topic == "dispensador/estado"
    assert settings.allowed_commands == ["dispensar_comida", "activar_agua", "status"]
    assert settings.http_port == 3000
    assert settings.schema_path.name == "mqtt_topics.json"
    assert settings.schema_path.is_file()
