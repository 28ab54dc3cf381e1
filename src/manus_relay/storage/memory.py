"""In-memory storage backend for tests only."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from manus_relay.storage.models import (
    AccountRecord,
    AccountSummary,
    NewTask,
    TaskChanges,
    TaskRecord,
)


class InMemoryRelayStorage:
    """Simple in-memory implementation for unit tests."""

    def __init__(self) -> None:
        self._accounts: dict[str, AccountRecord] = {}
        self._tasks: dict[str, TaskRecord] = {}

    def migrate(self) -> None:
        return None

    def create_account(
        self,
        *,
        user_id: str,
        name: str,
        api_key_encrypted: str,
        api_base_url: str,
    ) -> AccountRecord:
        now = datetime.now(UTC)
        record = AccountRecord(
            account_id=str(uuid4()),
            user_id=user_id,
            name=name,
            api_key_encrypted=api_key_encrypted,
            api_base_url=api_base_url,
            is_default=False,
            created_at=now,
            updated_at=now,
        )
        self._accounts[record.account_id] = record
        return record.model_copy(deep=True)

    def list_accounts(self, user_id: str) -> list[AccountSummary]:
        owned = [item for item in self._accounts.values() if item.user_id == user_id]
        owned.sort(key=lambda item: (item.is_default, item.created_at), reverse=True)
        return [item.summary() for item in owned]

    def get_account(self, account_id: str, user_id: str) -> AccountRecord | None:
        record = self._accounts.get(account_id)
        if record is None or record.user_id != user_id:
            return None
        return record.model_copy(deep=True)

    def delete_account(self, account_id: str, user_id: str) -> int:
        record = self._accounts.get(account_id)
        if record is None or record.user_id != user_id:
            return 0
        del self._accounts[account_id]
        orphaned = [
            task_id
            for task_id, task in self._tasks.items()
            if task.account_id == account_id and task.user_id == user_id
        ]
        for task_id in orphaned:
            del self._tasks[task_id]
        return len(orphaned)

    def set_default_account(self, account_id: str, user_id: str) -> None:
        now = datetime.now(UTC)
        for key, record in list(self._accounts.items()):
            if record.user_id != user_id:
                continue
            self._accounts[key] = record.model_copy(
                update={"is_default": key == account_id, "updated_at": now}
            )

    def create_task(self, task: NewTask) -> TaskRecord:
        now = datetime.now(UTC)
        record = TaskRecord(
            **task.model_dump(),
            task_id=str(uuid4()),
            created_at=now,
            updated_at=now,
        )
        self._tasks[record.task_id] = record
        return record.model_copy(deep=True)

    def get_task(self, task_id: str, user_id: str) -> TaskRecord | None:
        record = self._tasks.get(task_id)
        if record is None or record.user_id != user_id:
            return None
        return record.model_copy(deep=True)

    def get_task_by_remote_id(self, remote_task_id: str, user_id: str) -> TaskRecord | None:
        for record in self._tasks.values():
            if record.remote_task_id == remote_task_id and record.user_id == user_id:
                return record.model_copy(deep=True)
        return None

    def list_tasks(self, user_id: str, account_id: str | None = None) -> list[TaskRecord]:
        owned = [
            item
            for item in self._tasks.values()
            if item.user_id == user_id and (account_id is None or item.account_id == account_id)
        ]
        owned.sort(key=lambda item: item.updated_at, reverse=True)
        return [item.model_copy(deep=True) for item in owned]

    def update_task(self, task_id: str, user_id: str, changes: TaskChanges) -> TaskRecord | None:
        current = self._tasks.get(task_id)
        if current is None or current.user_id != user_id:
            return None
        update = changes.as_update()
        update["updated_at"] = datetime.now(UTC)
        updated = current.model_copy(update=update, deep=True)
        self._tasks[task_id] = updated
        return updated.model_copy(deep=True)

    def delete_task(self, task_id: str, user_id: str) -> None:
        record = self._tasks.get(task_id)
        if record is not None and record.user_id == user_id:
            del self._tasks[task_id]
