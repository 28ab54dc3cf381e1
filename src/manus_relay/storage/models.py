"""Storage models shared by services, API and persistence backends."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

TaskStatus = Literal["pending", "running", "completed", "failed", "unknown"]
MessageRole = Literal["user", "assistant"]
ContentType = Literal["text", "file", "image"]

TASK_STATUSES: frozenset[str] = frozenset({"pending", "running", "completed", "failed", "unknown"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})
DEFAULT_TASK_TITLE = "Untitled Task"
DEFAULT_AGENT_PROFILE = "manus-1.6"
DEFAULT_TASK_MODE = "agent"


class ContentBlock(BaseModel):
    """One piece of a message: plain text or a file/image reference."""

    type: ContentType
    text: str | None = None
    file_url: str | None = None
    file_name: str | None = None
    mime_type: str | None = None


class ConversationMessage(BaseModel):
    id: str | None = None
    role: MessageRole
    content: list[ContentBlock] = Field(default_factory=list)
    # Epoch milliseconds.
    timestamp: int | None = None


class AccountRecord(BaseModel):
    """Persisted account row, including the encrypted API key."""

    account_id: str
    user_id: str
    name: str
    api_key_encrypted: str
    api_base_url: str
    is_default: bool = False
    created_at: datetime
    updated_at: datetime

    def summary(self) -> AccountSummary:
        return AccountSummary(
            account_id=self.account_id,
            name=self.name,
            api_base_url=self.api_base_url,
            is_default=self.is_default,
            created_at=self.created_at,
        )


class AccountSummary(BaseModel):
    """Account as exposed to callers: never carries key material."""

    account_id: str
    name: str
    api_base_url: str
    is_default: bool
    created_at: datetime


class NewTask(BaseModel):
    """Fields required to insert a task row."""

    remote_task_id: str
    user_id: str
    account_id: str
    title: str = DEFAULT_TASK_TITLE
    status: TaskStatus = "unknown"
    agent_profile: str = DEFAULT_AGENT_PROFILE
    task_mode: str = DEFAULT_TASK_MODE
    project_id: str | None = None
    task_url: str | None = None
    share_url: str | None = None
    credit_usage: int = 0
    conversation_history: list[ConversationMessage] = Field(default_factory=list)


class TaskRecord(NewTask):
    """Persisted task row."""

    task_id: str
    created_at: datetime
    updated_at: datetime


class TaskChanges(BaseModel):
    """Partial task update; only fields explicitly set are written."""

    remote_task_id: str | None = None
    title: str | None = None
    status: TaskStatus | None = None
    task_url: str | None = None
    share_url: str | None = None
    credit_usage: int | None = None
    conversation_history: list[ConversationMessage] | None = None

    def as_update(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in sorted(self.model_fields_set)}

    def is_empty(self) -> bool:
        return not self.model_fields_set
