"""Thin synchronous client for the MANUS responses API.

All calls send the plaintext API key in the ``API_KEY`` header. There are no
retries: a failed call raises :class:`TransportError` and the caller decides
what to do with it.
"""

from __future__ import annotations

import http.client
import json
import logging
import time
from typing import Any, Protocol, TypeVar
from urllib import error, parse, request

from pydantic import BaseModel, ValidationError

from manus_relay.errors import TransportError
from manus_relay.remote.models import (
    ContinueRemoteTask,
    CreateRemoteTask,
    Credentials,
    ListRemoteTasks,
    RemoteTaskList,
    RemoteTaskResponse,
)

TModel = TypeVar("TModel", bound=BaseModel)
logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 120.0
API_KEY_HEADER = "API_KEY"


class RemoteTaskClient(Protocol):
    """Interface the services depend on; tests substitute fakes."""

    def create_task(
        self, credentials: Credentials, params: CreateRemoteTask
    ) -> RemoteTaskResponse: ...

    def continue_task(
        self, credentials: Credentials, params: ContinueRemoteTask
    ) -> RemoteTaskResponse: ...

    def get_task(self, credentials: Credentials, remote_task_id: str) -> RemoteTaskResponse: ...

    def list_tasks(
        self, credentials: Credentials, params: ListRemoteTasks | None = None
    ) -> RemoteTaskList: ...

    def delete_task(self, credentials: Credentials, remote_task_id: str) -> None: ...


class ManusClient:
    """HTTP implementation of :class:`RemoteTaskClient` built on urllib."""

    def __init__(self, *, timeout_s: float = DEFAULT_TIMEOUT_S) -> None:
        self.timeout_s = timeout_s

    def create_task(self, credentials: Credentials, params: CreateRemoteTask) -> RemoteTaskResponse:
        extra_body: dict[str, Any] = {
            "task_mode": params.task_mode,
            "agent_profile": params.agent_profile,
        }
        if params.project_id:
            extra_body["project_id"] = params.project_id
        if params.hide_in_task_list:
            extra_body["hide_in_task_list"] = True
        if params.create_shareable_link:
            extra_body["create_shareable_link"] = True

        body = {
            "input": [_user_turn(params.prompt, params.attachments)],
            "model": params.agent_profile,
            "extra_body": extra_body,
        }
        payload = self._request(credentials, "POST", "/v1/responses", body=body)
        return _parse(payload, RemoteTaskResponse)

    def continue_task(
        self, credentials: Credentials, params: ContinueRemoteTask
    ) -> RemoteTaskResponse:
        body = {
            "input": [_user_turn(params.prompt, params.attachments)],
            "model": params.agent_profile,
            "previous_response_id": params.previous_response_id,
            "extra_body": {
                "task_mode": params.task_mode,
                "agent_profile": params.agent_profile,
            },
        }
        payload = self._request(credentials, "POST", "/v1/responses", body=body)
        return _parse(payload, RemoteTaskResponse)

    def get_task(self, credentials: Credentials, remote_task_id: str) -> RemoteTaskResponse:
        payload = self._request(credentials, "GET", f"/v1/responses/{_segment(remote_task_id)}")
        return _parse(payload, RemoteTaskResponse)

    def list_tasks(
        self, credentials: Credentials, params: ListRemoteTasks | None = None
    ) -> RemoteTaskList:
        params = params or ListRemoteTasks()
        query: list[tuple[str, Any]] = []
        if params.limit:
            query.append(("limit", params.limit))
        if params.order:
            query.append(("order", params.order))
        for status in params.status:
            query.append(("status", status))
        path = "/v1/tasks"
        if query:
            path = f"{path}?{parse.urlencode(query)}"
        payload = self._request(credentials, "GET", path)
        return _parse(payload, RemoteTaskList)

    def delete_task(self, credentials: Credentials, remote_task_id: str) -> None:
        self._request(credentials, "DELETE", f"/v1/responses/{_segment(remote_task_id)}")

    def _request(
        self,
        credentials: Credentials,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{credentials.base_url.rstrip('/')}{path}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = request.Request(
            url=url,
            data=data,
            method=method,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                API_KEY_HEADER: credentials.api_key,
            },
        )
        started_at = time.perf_counter()
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                body = response.read()
        except error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            logger.warning(
                "manus_request event=http_error method=%s path=%s status=%s duration_ms=%s",
                method,
                path,
                exc.code,
                _duration_ms(started_at),
            )
            raise TransportError(
                f"MANUS request {method} {path} failed with status {exc.code}: {detail[:300]}",
                status_code=exc.code,
            ) from exc
        except (error.URLError, OSError, http.client.HTTPException) as exc:
            reason = getattr(exc, "reason", exc)
            logger.warning(
                "manus_request event=network_error method=%s path=%s reason=%s duration_ms=%s",
                method,
                path,
                reason,
                _duration_ms(started_at),
            )
            raise TransportError(f"MANUS request {method} {path} failed: {reason}") from exc

        logger.info(
            "manus_request event=ok method=%s path=%s duration_ms=%s",
            method,
            path,
            _duration_ms(started_at),
        )
        try:
            raw = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise TransportError(f"MANUS request {method} {path} returned non-UTF-8 body") from exc
        if not raw.strip():
            return {}
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise TransportError(f"MANUS request {method} {path} returned non-JSON body") from exc


def build_manus_client(*, timeout_s: float = DEFAULT_TIMEOUT_S) -> ManusClient:
    return ManusClient(timeout_s=timeout_s)


def _user_turn(prompt: str, attachments: list[Any]) -> dict[str, Any]:
    content: list[dict[str, Any]] = [{"type": "input_text", "text": prompt}]
    content.extend(attachment.to_payload() for attachment in attachments)
    return {"role": "user", "content": content}


def _parse(payload: Any, model: type[TModel]) -> TModel:
    if not isinstance(payload, dict):
        raise TransportError(f"MANUS returned unsupported JSON shape: {type(payload).__name__}")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise TransportError(
            f"MANUS returned a malformed {model.__name__}: {exc.error_count()} validation error(s)"
        ) from exc


def _segment(value: str) -> str:
    return parse.quote(value, safe="")


def _duration_ms(started_at: float) -> float:
    return round((time.perf_counter() - started_at) * 1000.0, 2)
