from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from manus_relay.errors import TransportError


def _create_account(client: TestClient, name: str = "Primary") -> str:
    response = client.post("/accounts", json={"name": name, "api_key": "sk-api-test"})
    assert response.status_code == 200
    return response.json()["account_id"]


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_requests_without_user_are_rejected(client: TestClient) -> None:
    response = client.get("/accounts", headers={"X-User-Id": ""})
    assert response.status_code == 401


def test_account_lifecycle(client: TestClient, fake_client) -> None:
    account_id = _create_account(client)

    listed = client.get("/accounts")
    assert listed.status_code == 200
    body = listed.json()
    assert [item["account_id"] for item in body] == [account_id]
    assert "sk-api-test" not in listed.text
    assert "api_key" not in body[0]
    assert "api_key_encrypted" not in body[0]

    default = client.post(f"/accounts/{account_id}/default")
    assert default.json() == {"success": True}
    assert client.get("/accounts").json()[0]["is_default"] is True

    tested = client.post(f"/accounts/{account_id}/test")
    assert tested.json() == {
        "success": True,
        "message": "API Key is valid. Connection successful.",
    }

    deleted = client.delete(f"/accounts/{account_id}")
    assert deleted.json() == {"success": True, "removed_tasks": 0}
    assert client.get("/accounts").json() == []


def test_accounts_are_isolated_per_user(client: TestClient) -> None:
    account_id = _create_account(client)

    other = client.get("/accounts", headers={"X-User-Id": "user-2"})
    assert other.json() == []
    missing = client.delete(f"/accounts/{account_id}", headers={"X-User-Id": "user-2"})
    assert missing.status_code == 404


def test_invalid_account_payload_is_422(client: TestClient) -> None:
    response = client.post("/accounts", json={"name": "", "api_key": "sk"})
    assert response.status_code == 422


def test_task_flow(client: TestClient, fake_client, make_response) -> None:
    account_id = _create_account(client)
    fake_client.create_queue.append(make_response("resp-1", assistant_text="hello"))

    created = client.post("/tasks", json={"account_id": account_id, "prompt": "hi"})
    assert created.status_code == 200
    task = created.json()
    assert task["remote_task_id"] == "resp-1"
    assert task["status"] == "running"

    fake_client.continue_queue.append(make_response("resp-2", status="completed"))
    continued = client.post(f"/tasks/{task['task_id']}/continue", json={"prompt": "thanks"})
    assert continued.status_code == 200
    assert continued.json()["remote_task_id"] == "resp-2"

    fetched = client.get(f"/tasks/{task['task_id']}")
    assert fetched.json()["source"] == "cache"
    assert fetched.json()["task"]["status"] == "completed"

    polled = client.get(f"/tasks/{task['task_id']}/poll")
    assert polled.json()["status"] == "completed"

    listed = client.get("/tasks", params={"account_id": account_id})
    assert [item["task_id"] for item in listed.json()] == [task["task_id"]]

    deleted = client.delete(f"/tasks/{task['task_id']}")
    assert deleted.json() == {"success": True}
    assert client.get(f"/tasks/{task['task_id']}").status_code == 404


def test_upstream_failure_maps_to_502(client: TestClient, fake_client) -> None:
    account_id = _create_account(client)
    fake_client.create_queue.append(TransportError("boom sk-api-test", status_code=503))

    response = client.post("/tasks", json={"account_id": account_id, "prompt": "hi"})

    assert response.status_code == 502
    assert response.json()["upstream_status"] == 503
    assert "sk-api-test" not in response.text


def test_unknown_agent_profile_is_422(client: TestClient, fake_client) -> None:
    account_id = _create_account(client)

    response = client.post(
        "/tasks",
        json={"account_id": account_id, "prompt": "hi", "agent_profile": "manus-9"},
    )

    assert response.status_code == 422
    assert fake_client.calls == []


def test_remote_task_listing_validates_limit(client: TestClient, fake_client) -> None:
    account_id = _create_account(client)

    bad = client.get(f"/accounts/{account_id}/remote-tasks", params={"limit": 500})
    assert bad.status_code == 422

    ok = client.get(
        f"/accounts/{account_id}/remote-tasks",
        params={"limit": 2, "status": ["running", "pending"]},
    )
    assert ok.status_code == 200
    assert ok.json()["data"] == []
    params = fake_client.calls_to("list_tasks")[0]
    assert params.limit == 2
    assert params.status == ["running", "pending"]


def test_missing_database_is_500(
    monkeypatch: pytest.MonkeyPatch, relay_settings, fake_client, vault
) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    from manus_relay.api.main import create_app

    app = create_app(settings_override=relay_settings, client=fake_client, vault=vault)
    with TestClient(app) as test_client:
        response = test_client.get("/accounts", headers={"X-User-Id": "user-1"})

    assert response.status_code == 500
    assert response.json() == {"detail": "Database not available"}
