from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from web import app as web_app


class DummyManager:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.calls: List[tuple[str, tuple[Any, ...]]] = []

    def _record(self, name: str, *args: Any) -> bool:
        self.calls.append((name, args))
        return self.available

    def login(self, username: str, password: str) -> bool:
        return self._record("login", username, password)

    def navigate(self, action, data: Optional[Dict[str, Any]] = None) -> bool:
        return self._record("navigate", action.value, data)

    def navigate_sequence(self, permit_type: str, group_number: int) -> bool:
        return self._record("navigate_sequence", permit_type, group_number)

    def start_scanning(self, retry_delay: Optional[float] = None, group_size: Optional[int] = None) -> bool:
        return self._record("start_scanning", retry_delay, group_size)

    def stop_scanning(self) -> bool:
        return self._record("stop_scanning")

    def status_snapshot(self) -> Dict[str, Any]:
        return {"run_id": "demo", "available": self.available, "events": [{"type": "INFO", "message": "hi"}]}


@pytest.fixture
def manager(monkeypatch: pytest.MonkeyPatch) -> DummyManager:
    dummy = DummyManager()
    monkeypatch.setattr(web_app, "_get_automation_manager", lambda: dummy)
    return dummy


@pytest.fixture
def client(manager: DummyManager):
    return web_app.app.test_client()


def test_healthz(client) -> None:
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "ok"


def test_login_requires_credentials(client, manager: DummyManager) -> None:
    response = client.post("/api/login", json={"username": "123"})
    assert response.status_code == 400
    assert manager.calls == []


def test_login_sends_command(client, manager: DummyManager) -> None:
    response = client.post("/api/login", json={"username": " 123 ", "password": "pw"})
    assert response.status_code == 200
    assert response.get_json() == {"status": "sent"}
    assert manager.calls == [("login", ("123", "pw"))]


def test_unavailable_automation_returns_503(client, manager: DummyManager) -> None:
    manager.available = False
    response = client.post("/api/scanning/stop")
    assert response.status_code == 503
    assert response.get_json() == {"error": "automation not available"}


def test_navigate_rejects_unknown_action(client, manager: DummyManager) -> None:
    response = client.post("/api/navigate", json={"action": "CLICK_NOWHERE"})
    assert response.status_code == 400
    assert manager.calls == []


def test_navigate_forwards_action_and_data(client, manager: DummyManager) -> None:
    response = client.post("/api/navigate", json={"action": "CLICK_FILTER", "data": {"groupNumber": "2"}})
    assert response.status_code == 200
    assert manager.calls == [("navigate", ("CLICK_FILTER", {"groupNumber": "2"}))]


def test_navigate_sequence_validates_inputs(client, manager: DummyManager) -> None:
    assert client.post("/api/navigate/sequence", json={"permitType": "kids"}).status_code == 400
    assert client.post("/api/navigate/sequence", json={"groupNumber": 11}).status_code == 400

    response = client.post("/api/navigate/sequence", json={"permitType": "Women", "groupNumber": "3"})
    assert response.status_code == 200
    assert manager.calls == [("navigate_sequence", ("women", 3))]


@pytest.mark.parametrize(
    "body, expected",
    [
        ({}, (None, None)),
        ({"retryDelay": "7"}, (7.0, None)),
        ({"groupSize": 4}, (None, 4)),
        ({"companions": ["a", "b", "c"]}, (None, 3)),
        ({"companions": [{"id": 1, "selected": True}, {"id": 2, "selected": False}]}, (None, 1)),
        ({"companions": [str(i) for i in range(14)]}, (None, 10)),
    ],
)
def test_start_scanning_group_size_sources(client, manager: DummyManager, body, expected) -> None:
    response = client.post("/api/scanning/start", json=body)
    assert response.status_code == 200
    assert manager.calls == [("start_scanning", expected)]


def test_start_scanning_rejects_bad_numbers(client, manager: DummyManager) -> None:
    assert client.post("/api/scanning/start", json={"retryDelay": "soon"}).status_code == 400
    assert client.post("/api/scanning/start", json={"groupSize": 0}).status_code == 400
    assert manager.calls == []


def test_status_snapshot(client) -> None:
    response = client.get("/api/status")
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["available"] is True
    assert payload["events"][0]["message"] == "hi"
