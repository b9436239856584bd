import pytest
from fastapi.testclient import TestClient

from conftest import FakeSource, build_runtime, wait_for
from facewatch.web_app import create_web_app


@pytest.fixture
def runtime(known_faces, speaker):
    runtime = build_runtime(known_faces, speaker)
    yield runtime
    runtime.stop_camera()


@pytest.fixture
def client(runtime):
    return TestClient(create_web_app(runtime=runtime, load_models=False))


def test_health_endpoint(client, runtime):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True, "status": "loading"}

    runtime.load_models()
    assert client.get("/api/health").json()["status"] == "ready"


def test_dashboard_page_renders(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "50%" in response.text


def test_known_faces_listing(client):
    body = client.get("/api/known-faces").json()
    assert [item["id"] for item in body] == ["ashal", "tom-cruise"]
    assert body[1]["category"] == "celebrity"


def test_start_before_models_is_a_conflict(client):
    assert client.post("/api/camera/start").status_code == 409


def test_camera_start_state_and_stop(client, runtime):
    runtime.load_models()
    response = client.post("/api/camera/start")
    assert response.status_code == 200
    assert response.json() == {"ok": True, "started": True, "running": True}

    assert wait_for(lambda: client.get("/api/state").json()["history"])
    state = client.get("/api/state").json()
    assert state["running"] is True
    assert state["mode"] == "recognition"
    assert state["history"][0].startswith("ASHAL detected at ")

    response = client.post("/api/camera/stop")
    assert response.json() == {"ok": True, "stopped": True, "running": False}
    state = client.get("/api/state").json()
    assert state["running"] is False
    assert state["detections"] == []


def test_camera_failure_maps_to_bad_request(known_faces, speaker):
    runtime = build_runtime(known_faces, speaker, source=FakeSource(fail_open=True))
    runtime.load_models()
    client = TestClient(create_web_app(runtime=runtime, load_models=False))
    response = client.post("/api/camera/start")
    assert response.status_code == 400
    assert "Permission denied" in response.json()["detail"]


def test_settings_update_and_validation(client):
    response = client.post("/api/settings", json={"confidence": 0.72, "muted": True})
    assert response.status_code == 200
    settings = response.json()["settings"]
    assert (settings["confidence"], settings["muted"]) == (0.7, True)

    assert client.post("/api/settings", json={"confidence": 0.95}).status_code == 400
    assert client.post("/api/settings", json={"confidence": "high"}).status_code == 422


def test_mute_toggle(client):
    assert client.post("/api/mute/toggle").json() == {"ok": True, "muted": True}
    assert client.post("/api/mute/toggle").json() == {"ok": True, "muted": False}
    notifications = client.get("/api/state").json()["notifications"]
    assert [item["message"] for item in notifications] == ["Audio alerts muted", "Audio alerts enabled"]


def test_state_polling_does_not_consume_notifications(client):
    client.post("/api/mute/toggle")
    first = client.get("/api/state").json()
    second = client.get("/api/state").json()
    assert [item["message"] for item in first["notifications"]] == ["Audio alerts muted"]
    assert second["notifications"] == first["notifications"]

    cursor = first["notification_cursor"]
    assert client.get("/api/state", params={"since": cursor}).json()["notifications"] == []
    client.post("/api/mute/toggle")
    newer = client.get("/api/state", params={"since": cursor}).json()
    assert [item["message"] for item in newer["notifications"]] == ["Audio alerts enabled"]
