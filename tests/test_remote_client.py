from __future__ import annotations

import http.client
import io
import json
from typing import Any
from urllib import error, request

import pytest

from manus_relay.errors import TransportError
from manus_relay.remote import client as client_module
from manus_relay.remote.client import ManusClient
from manus_relay.remote.models import (
    Attachment,
    ContinueRemoteTask,
    CreateRemoteTask,
    Credentials,
    ListRemoteTasks,
)

CREDENTIALS = Credentials(api_key="sk-test-key", base_url="https://manus.example/")


class _FakeHTTPResponse:
    def __init__(self, payload: Any) -> None:
        if isinstance(payload, bytes):
            self._raw_body = payload
        else:
            self._raw_body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._raw_body

    def __enter__(self) -> _FakeHTTPResponse:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        _ = (exc_type, exc, tb)
        return False


def _capture(
    monkeypatch: pytest.MonkeyPatch, payload: Any
) -> list[tuple[request.Request, float]]:
    captured: list[tuple[request.Request, float]] = []

    def fake_urlopen(req: request.Request, timeout: float):
        captured.append((req, timeout))
        return _FakeHTTPResponse(payload)

    monkeypatch.setattr(client_module.request, "urlopen", fake_urlopen)
    return captured


def _body(req: request.Request) -> dict[str, Any]:
    assert req.data is not None
    return json.loads(req.data.decode("utf-8"))


def test_create_task_posts_user_turn_with_extra_body(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _capture(
        monkeypatch,
        {
            "id": "resp-1",
            "status": "running",
            "metadata": {"task_url": "https://manus.im/app/resp-1", "credit_usage": 4},
            "output": [
                {
                    "id": "m1",
                    "role": "assistant",
                    "content": [{"type": "output_text", "text": "ok"}],
                }
            ],
        },
    )

    response = ManusClient(timeout_s=90.0).create_task(
        CREDENTIALS,
        CreateRemoteTask(
            prompt="Summarize the report",
            agent_profile="manus-1.6-max",
            task_mode="adaptive",
            project_id="proj-9",
            attachments=[Attachment(type="input_image", file_url="https://cdn.example/a.png")],
        ),
    )

    req, timeout = captured[0]
    assert timeout == 90.0
    assert req.get_method() == "POST"
    assert req.full_url == "https://manus.example/v1/responses"
    assert req.get_header("Api_key") == "sk-test-key"
    body = _body(req)
    assert body["model"] == "manus-1.6-max"
    assert body["input"] == [
        {
            "role": "user",
            "content": [
                {"type": "input_text", "text": "Summarize the report"},
                {"type": "input_image", "fileUrl": "https://cdn.example/a.png"},
            ],
        }
    ]
    assert body["extra_body"] == {
        "task_mode": "adaptive",
        "agent_profile": "manus-1.6-max",
        "project_id": "proj-9",
    }
    assert "previous_response_id" not in body

    assert response.id == "resp-1"
    assert response.metadata.credit_usage == "4"
    assert response.output[0].content[0].text == "ok"


def test_continue_task_chains_previous_response_id(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _capture(monkeypatch, {"id": "resp-2", "status": "running"})

    response = ManusClient().continue_task(
        CREDENTIALS,
        ContinueRemoteTask(previous_response_id="resp-1", prompt="And the appendix?"),
    )

    req, timeout = captured[0]
    assert timeout == client_module.DEFAULT_TIMEOUT_S
    body = _body(req)
    assert body["previous_response_id"] == "resp-1"
    assert body["input"][0]["content"] == [{"type": "input_text", "text": "And the appendix?"}]
    assert response.id == "resp-2"


def test_get_task_normalizes_missing_arrays(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _capture(
        monkeypatch,
        {"id": "resp-1", "status": None, "metadata": None, "output": None},
    )

    response = ManusClient().get_task(CREDENTIALS, "resp/1")

    req, _ = captured[0]
    assert req.get_method() == "GET"
    assert req.full_url == "https://manus.example/v1/responses/resp%2F1"
    assert req.data is None
    assert response.status == "unknown"
    assert response.output == []
    assert response.metadata.task_url is None


def test_list_tasks_encodes_query(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _capture(
        monkeypatch,
        {"data": [{"id": "resp-1", "status": "completed"}], "has_more": True, "last_id": "resp-1"},
    )

    listing = ManusClient().list_tasks(
        CREDENTIALS,
        ListRemoteTasks(limit=5, order="desc", status=["running", "completed"]),
    )

    req, _ = captured[0]
    assert req.full_url == (
        "https://manus.example/v1/tasks?limit=5&order=desc&status=running&status=completed"
    )
    assert [item.id for item in listing.data] == ["resp-1"]
    assert listing.has_more is True


def test_list_tasks_without_filters_has_no_query(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _capture(monkeypatch, {"data": None})

    listing = ManusClient().list_tasks(CREDENTIALS)

    assert captured[0][0].full_url == "https://manus.example/v1/tasks"
    assert listing.data == []


def test_delete_task_accepts_empty_body(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _capture(monkeypatch, b"")

    ManusClient().delete_task(CREDENTIALS, "resp-1")

    assert captured[0][0].get_method() == "DELETE"


def test_http_error_maps_to_transport_error_with_status(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req: request.Request, timeout: float):
        raise error.HTTPError(
            req.full_url, 401, "Unauthorized", hdrs=None, fp=io.BytesIO(b'{"error":"bad key"}')
        )

    monkeypatch.setattr(client_module.request, "urlopen", fake_urlopen)

    with pytest.raises(TransportError) as exc_info:
        ManusClient().get_task(CREDENTIALS, "resp-1")

    assert exc_info.value.status_code == 401
    assert "sk-test-key" not in str(exc_info.value)


def test_network_error_maps_to_transport_error_without_status(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_urlopen(req: request.Request, timeout: float):
        raise error.URLError("connection refused")

    monkeypatch.setattr(client_module.request, "urlopen", fake_urlopen)

    with pytest.raises(TransportError) as exc_info:
        ManusClient().get_task(CREDENTIALS, "resp-1")

    assert exc_info.value.status_code is None


def test_timeout_maps_to_transport_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req: request.Request, timeout: float):
        raise TimeoutError("timed out")

    monkeypatch.setattr(client_module.request, "urlopen", fake_urlopen)

    with pytest.raises(TransportError):
        ManusClient().get_task(CREDENTIALS, "resp-1")


@pytest.mark.parametrize(
    "payload", [b"<html>oops</html>", b"\xff\xfe{}", [1, 2, 3], {"status": "running"}]
)
def test_unusable_body_maps_to_transport_error(
    monkeypatch: pytest.MonkeyPatch, payload: Any
) -> None:
    _capture(monkeypatch, payload)

    with pytest.raises(TransportError):
        ManusClient().get_task(CREDENTIALS, "resp-1")


def test_credentials_repr_hides_api_key() -> None:
    assert "sk-test-key" not in repr(CREDENTIALS)


def test_truncated_body_maps_to_transport_error(monkeypatch: pytest.MonkeyPatch) -> None:
    class _TruncatedResponse(_FakeHTTPResponse):
        def read(self) -> bytes:
            raise http.client.IncompleteRead(b"{")

    def fake_urlopen(req: request.Request, timeout: float):
        return _TruncatedResponse({})

    monkeypatch.setattr(client_module.request, "urlopen", fake_urlopen)

    with pytest.raises(TransportError) as exc_info:
        ManusClient().get_task(CREDENTIALS, "resp-1")

    assert exc_info.value.status_code is None


def test_null_role_and_content_type_are_tolerated(monkeypatch: pytest.MonkeyPatch) -> None:
    _capture(
        monkeypatch,
        {
            "id": "resp-1",
            "status": "running",
            "output": [
                {"role": None, "content": [{"type": "output_text", "text": "skip"}]},
                {"role": "assistant", "content": [{"type": None, "text": "kept"}]},
            ],
        },
    )

    response = ManusClient().get_task(CREDENTIALS, "resp-1")

    assert response.output[0].role == ""
    assert response.output[1].content[0].type == "output_text"
    assert response.output[1].content[0].text == "kept"
