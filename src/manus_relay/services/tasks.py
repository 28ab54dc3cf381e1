"""Task operations: proxy turns to MANUS and keep the local copy in step."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from manus_relay.errors import AuthenticationError, NotFoundError, RelayError, TransportError
from manus_relay.remote.client import RemoteTaskClient
from manus_relay.remote.models import ContinueRemoteTask, CreateRemoteTask
from manus_relay.services.accounts import AccountService
from manus_relay.services.schemas import (
    ContinueTaskRequest,
    CreateTaskRequest,
    TaskPoll,
    TaskSync,
    validate_input,
)
from manus_relay.storage.base import RelayStorage
from manus_relay.storage.models import TaskRecord
from manus_relay.sync import reconciler

logger = logging.getLogger(__name__)

# Failures that turn get/poll into a read of the cached row.
_DEGRADABLE_ERRORS: tuple[type[RelayError], ...] = (
    TransportError,
    AuthenticationError,
    NotFoundError,
)


class TaskService:
    def __init__(
        self,
        *,
        storage: RelayStorage,
        accounts: AccountService,
        client: RemoteTaskClient,
        clock: Callable[[], int] = reconciler.now_ms,
    ) -> None:
        self.storage = storage
        self.accounts = accounts
        self.client = client
        self.clock = clock

    def create_task(self, user_id: str, payload: CreateTaskRequest | dict[str, Any]) -> TaskRecord:
        request = validate_input(CreateTaskRequest, payload)
        account = self.accounts.require_account(user_id, request.account_id)
        credentials = self.accounts.credentials_for(account)

        response = self.client.create_task(
            credentials,
            CreateRemoteTask(
                prompt=request.prompt,
                agent_profile=request.agent_profile,
                task_mode=request.task_mode,
                project_id=request.project_id,
                attachments=request.attachments,
                hide_in_task_list=request.hide_in_task_list,
                create_shareable_link=request.create_shareable_link,
            ),
        )
        new_task = reconciler.reconcile_create(
            response,
            prompt=request.prompt,
            user_id=user_id,
            account_id=account.account_id,
            agent_profile=request.agent_profile,
            task_mode=request.task_mode,
            project_id=request.project_id,
            attachments=request.attachments,
            timestamp=self.clock(),
        )
        task = self.storage.create_task(new_task)
        logger.info(
            "task_sync event=created task_id=%s remote_task_id=%s status=%s messages=%d",
            task.task_id,
            task.remote_task_id,
            task.status,
            len(task.conversation_history),
        )
        return task

    def continue_task(
        self,
        user_id: str,
        task_id: str,
        payload: ContinueTaskRequest | dict[str, Any],
    ) -> TaskRecord:
        request = validate_input(ContinueTaskRequest, payload)
        task = self.require_task(user_id, task_id)
        credentials = self.accounts.credentials_for(
            self.accounts.require_account(user_id, task.account_id)
        )

        response = self.client.continue_task(
            credentials,
            ContinueRemoteTask(
                previous_response_id=task.remote_task_id,
                prompt=request.prompt,
                agent_profile=task.agent_profile,
                task_mode=task.task_mode,
                attachments=request.attachments,
            ),
        )
        changes = reconciler.reconcile_continue(
            task,
            response,
            prompt=request.prompt,
            attachments=request.attachments,
            timestamp=self.clock(),
        )
        # No version check: a concurrent continue on the same task is overwritten.
        updated = self.storage.update_task(task.task_id, user_id, changes)
        if updated is None:
            raise NotFoundError("Task not found")
        logger.info(
            "task_sync event=continued task_id=%s previous_remote_id=%s remote_task_id=%s "
            "status=%s credit_usage=%d",
            task.task_id,
            task.remote_task_id,
            updated.remote_task_id,
            updated.status,
            updated.credit_usage,
        )
        return updated

    def get_task(self, user_id: str, task_id: str) -> TaskSync:
        task = self.require_task(user_id, task_id)
        if not reconciler.needs_remote_sync(task):
            return TaskSync(task=task, source="cache")

        try:
            credentials = self.accounts.credentials_for(
                self.accounts.require_account(user_id, task.account_id)
            )
            response = self.client.get_task(credentials, task.remote_task_id)
        except _DEGRADABLE_ERRORS as exc:
            return TaskSync(task=task, source="degraded", detail=self._degraded(task, "get", exc))

        changes = reconciler.reconcile_sync(task, response, timestamp=self.clock())
        updated = self.storage.update_task(task.task_id, user_id, changes)
        if updated is None:
            raise NotFoundError("Task not found")
        logger.info(
            "task_sync event=synced task_id=%s status=%s messages=%d",
            updated.task_id,
            updated.status,
            len(updated.conversation_history),
        )
        return TaskSync(task=updated, source="remote")

    def poll_task(self, user_id: str, task_id: str) -> TaskPoll:
        task = self.require_task(user_id, task_id)
        if not reconciler.needs_poll(task):
            return self._poll_result(task, source="cache")

        try:
            credentials = self.accounts.credentials_for(
                self.accounts.require_account(user_id, task.account_id)
            )
            response = self.client.get_task(credentials, task.remote_task_id)
        except _DEGRADABLE_ERRORS as exc:
            detail = self._degraded(task, "poll", exc)
            return self._poll_result(task, source="degraded", detail=detail)

        changes = reconciler.reconcile_poll(task, response)
        if changes.is_empty():
            return self._poll_result(task, source="remote")
        updated = self.storage.update_task(task.task_id, user_id, changes)
        logger.info(
            "task_sync event=status_changed task_id=%s from=%s to=%s",
            task.task_id,
            task.status,
            changes.status,
        )
        if updated is None:
            updated = task.model_copy(update={"status": changes.status})
        return self._poll_result(updated, source="remote")

    def list_tasks(self, user_id: str, account_id: str | None = None) -> list[TaskRecord]:
        return self.storage.list_tasks(user_id, account_id)

    def delete_task(self, user_id: str, task_id: str, *, delete_remote: bool = False) -> None:
        task = self.require_task(user_id, task_id)
        if delete_remote:
            credentials = self.accounts.credentials_for(
                self.accounts.require_account(user_id, task.account_id)
            )
            self.client.delete_task(credentials, task.remote_task_id)
        self.storage.delete_task(task.task_id, user_id)
        logger.info(
            "task_sync event=deleted task_id=%s remote_deleted=%s",
            task.task_id,
            delete_remote,
        )

    def require_task(self, user_id: str, task_id: str) -> TaskRecord:
        task = self.storage.get_task(task_id, user_id)
        if task is None:
            raise NotFoundError("Task not found")
        return task

    @staticmethod
    def _poll_result(task: TaskRecord, *, source: str, detail: str | None = None) -> TaskPoll:
        return TaskPoll(
            task_id=task.task_id,
            remote_task_id=task.remote_task_id,
            status=task.status,
            source=source,
            detail=detail,
        )

    @staticmethod
    def _degraded(task: TaskRecord, operation: str, exc: RelayError) -> str:
        status_code = getattr(exc, "status_code", None)
        detail = type(exc).__name__
        if status_code is not None:
            detail = f"{detail}({status_code})"
        logger.warning(
            "task_sync event=degraded_read operation=%s task_id=%s status=%s reason=%s",
            operation,
            task.task_id,
            task.status,
            detail,
        )
        return detail
