import pytest
from fastapi.testclient import TestClient

import web_server
from conftest import make_sample
from device_session import SimulatedPowerSupply
from psu_controller import PowerSupplyController
from psu_state import SetpointState


@pytest.fixture
def client():
    yield TestClient(web_server.app)
    web_server.set_controller(None)


@pytest.fixture
def controller():
    session = SimulatedPowerSupply(latency=0)
    ctl = PowerSupplyController(session, grace_delay=0.01, device_name="Sim")
    web_server.set_controller(ctl)
    return ctl


def _seed_setpoint(ctl, **overrides):
    fields = dict(enabled=False, voltage_set_mv=5000, current_set_mv=100, last_updated=1.0)
    fields.update(overrides)
    ctl.setpoint_sub.latest_value = SetpointState(**fields)


def test_index(client):
    body = client.get("/").json()
    assert "state" in body["endpoints"]


def test_state_without_controller(client):
    body = client.get("/api/state").json()
    assert "error" in body


def test_state_with_controller(client, controller):
    _seed_setpoint(controller)
    body = client.get("/api/state").json()
    assert body["device"]["name"] == "Sim"
    assert body["setpoint"]["voltage"] == 5.0
    assert body["telemetry"] is None
    assert body["mode"] == "unknown"


def test_history_projection(client, controller):
    for t in range(5):
        controller.history.append(make_sample(timestamp=1700000000.0 + t, current_ma=250,
                                              voltage_mv=12000))
    body = client.get("/api/history", params={"limit": 3}).json()
    assert len(body["labels"]) == len(body["currents"]) == len(body["voltages"]) == 3
    assert body["currents"] == [0.25, 0.25, 0.25]
    assert body["voltages"] == [12.0, 12.0, 12.0]


def test_history_without_controller(client):
    assert client.get("/api/history").json()["voltages"] == []


def test_setpoint_before_state_is_conflict(client, controller):
    resp = client.post("/api/setpoint", json={"voltage": 6.0})
    assert resp.status_code == 409


def test_setpoint_write_and_repoll(client, controller):
    _seed_setpoint(controller)
    resp = client.post("/api/setpoint", json={"voltage": 6.5, "enabled": True})
    assert resp.status_code == 200
    body = resp.json()
    assert body["setpoint"]["voltage"] == 6.5
    assert body["setpoint"]["enabled"] is True
    # Current limit is carried over from the last read state
    assert body["setpoint"]["current"] == 0.1
    assert controller.session.writes[-1].payload() == {
        "enabled": True, "voltage_set_mv": 6500, "current_set_mv": 100,
    }


def test_rejected_write_is_bad_gateway(client, controller):
    _seed_setpoint(controller)
    controller.session.fail_writes = 1
    resp = client.post("/api/setpoint", json={"current": 0.5})
    assert resp.status_code == 502
    assert controller.setpoint.current_set_mv == 100


@pytest.mark.parametrize("body", [{"voltage": -1}, {}])
def test_invalid_setpoint_request(client, controller, body):
    _seed_setpoint(controller)
    resp = client.post("/api/setpoint", json=body)
    assert resp.status_code == 422
    assert controller.session.writes == []


def test_setpoint_without_controller(client):
    assert client.post("/api/setpoint", json={"enabled": True}).status_code == 503


def test_websocket_sends_initial_state(client, controller):
    _seed_setpoint(controller)
    with client.websocket_connect("/ws") as ws:
        msg = ws.receive_json()
    assert msg["type"] == "state"
    assert msg["data"]["setpoint"]["current"] == 0.1
