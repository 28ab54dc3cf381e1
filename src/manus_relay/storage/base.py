"""Storage interface for accounts and tasks.

Every operation is scoped by ``user_id``; rows owned by other users behave as
if they did not exist.
"""

from __future__ import annotations

from typing import Protocol

from manus_relay.storage.models import (
    AccountRecord,
    AccountSummary,
    NewTask,
    TaskChanges,
    TaskRecord,
)


class RelayStorage(Protocol):
    def migrate(self) -> None: ...

    def create_account(
        self,
        *,
        user_id: str,
        name: str,
        api_key_encrypted: str,
        api_base_url: str,
    ) -> AccountRecord: ...

    def list_accounts(self, user_id: str) -> list[AccountSummary]: ...

    def get_account(self, account_id: str, user_id: str) -> AccountRecord | None: ...

    def delete_account(self, account_id: str, user_id: str) -> int: ...

    def set_default_account(self, account_id: str, user_id: str) -> None: ...

    def create_task(self, task: NewTask) -> TaskRecord: ...

    def get_task(self, task_id: str, user_id: str) -> TaskRecord | None: ...

    def get_task_by_remote_id(self, remote_task_id: str, user_id: str) -> TaskRecord | None: ...

    def list_tasks(self, user_id: str, account_id: str | None = None) -> list[TaskRecord]: ...

    def update_task(
        self, task_id: str, user_id: str, changes: TaskChanges
    ) -> TaskRecord | None: ...

    def delete_task(self, task_id: str, user_id: str) -> None: ...
