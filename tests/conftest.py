from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from manus_relay.api.main import create_app
from manus_relay.config.settings import Settings
from manus_relay.remote.models import (
    ContinueRemoteTask,
    CreateRemoteTask,
    Credentials,
    ListRemoteTasks,
    RemoteTaskList,
    RemoteTaskResponse,
)
from manus_relay.security.vault import CredentialVault
from manus_relay.services.accounts import AccountService
from manus_relay.services.tasks import TaskService
from manus_relay.storage.memory import InMemoryRelayStorage

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
TEST_SECRET = "unit-test-secret"


def remote_response(
    response_id: str,
    *,
    status: str = "running",
    assistant_text: str | None = None,
    credit_usage: str | None = None,
    task_title: str | None = None,
    task_url: str | None = None,
    output: list[dict[str, Any]] | None = None,
) -> RemoteTaskResponse:
    if output is None:
        output = []
        if assistant_text is not None:
            output.append(
                {
                    "id": f"msg-{response_id}",
                    "role": "assistant",
                    "content": [{"type": "output_text", "text": assistant_text}],
                }
            )
    metadata: dict[str, Any] = {}
    if credit_usage is not None:
        metadata["credit_usage"] = credit_usage
    if task_title is not None:
        metadata["task_title"] = task_title
    if task_url is not None:
        metadata["task_url"] = task_url
    return RemoteTaskResponse.model_validate(
        {"id": response_id, "status": status, "metadata": metadata, "output": output}
    )


class FakeManusClient:
    """Scripted stand-in for ManusClient; queued items may be responses or exceptions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.credentials: list[Credentials] = []
        self.create_queue: list[Any] = []
        self.continue_queue: list[Any] = []
        self.get_queue: list[Any] = []
        self.list_queue: list[Any] = []
        self.delete_queue: list[Any] = []

    def create_task(self, credentials: Credentials, params: CreateRemoteTask) -> RemoteTaskResponse:
        return self._next("create_task", credentials, params, self.create_queue)

    def continue_task(
        self, credentials: Credentials, params: ContinueRemoteTask
    ) -> RemoteTaskResponse:
        return self._next("continue_task", credentials, params, self.continue_queue)

    def get_task(self, credentials: Credentials, remote_task_id: str) -> RemoteTaskResponse:
        return self._next("get_task", credentials, remote_task_id, self.get_queue)

    def list_tasks(
        self, credentials: Credentials, params: ListRemoteTasks | None = None
    ) -> RemoteTaskList:
        if not self.list_queue:
            self.list_queue.append(RemoteTaskList())
        return self._next("list_tasks", credentials, params, self.list_queue)

    def delete_task(self, credentials: Credentials, remote_task_id: str) -> None:
        if not self.delete_queue:
            self.delete_queue.append(None)
        self._next("delete_task", credentials, remote_task_id, self.delete_queue)

    def calls_to(self, name: str) -> list[Any]:
        return [argument for call_name, argument in self.calls if call_name == name]

    def _next(self, name: str, credentials: Credentials, argument: Any, queue: list[Any]) -> Any:
        self.calls.append((name, argument))
        self.credentials.append(credentials)
        if not queue:
            raise AssertionError(f"Unexpected {name} call")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class StepClock:
    """Deterministic epoch-millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.value = start

    def __call__(self) -> int:
        self.value += 1000
        return self.value


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(TEST_SECRET)


@pytest.fixture
def storage() -> InMemoryRelayStorage:
    return InMemoryRelayStorage()


@pytest.fixture
def fake_client() -> FakeManusClient:
    return FakeManusClient()


@pytest.fixture
def account_service(
    storage: InMemoryRelayStorage,
    vault: CredentialVault,
    fake_client: FakeManusClient,
) -> AccountService:
    return AccountService(storage=storage, vault=vault, client=fake_client)


@pytest.fixture
def task_service(
    storage: InMemoryRelayStorage,
    account_service: AccountService,
    fake_client: FakeManusClient,
) -> TaskService:
    return TaskService(
        storage=storage,
        accounts=account_service,
        client=fake_client,
        clock=StepClock(),
    )


@pytest.fixture
def relay_settings() -> Settings:
    return Settings(database_url="", encryption_secret=TEST_SECRET, log_level="WARNING")


@pytest.fixture
def client(
    storage: InMemoryRelayStorage,
    fake_client: FakeManusClient,
    vault: CredentialVault,
    relay_settings: Settings,
) -> Iterator[TestClient]:
    app = create_app(
        storage=storage,
        settings_override=relay_settings,
        client=fake_client,
        vault=vault,
    )
    with TestClient(app) as test_client:
        test_client.headers.update({"X-User-Id": USER_ID})
        yield test_client


@pytest.fixture
def make_response():
    return remote_response


@pytest.fixture
def account_id(account_service: AccountService) -> str:
    summary = account_service.create_account(
        USER_ID,
        {"name": "Primary", "api_key": "sk-live-primary"},
    )
    return summary.account_id
