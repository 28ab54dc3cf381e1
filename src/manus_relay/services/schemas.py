"""Request and result models for account and task operations."""

from __future__ import annotations

from typing import Any, Literal, TypeVar
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from manus_relay.errors import ValidationError
from manus_relay.remote.models import AgentProfile, Attachment, ListOrder, TaskMode
from manus_relay.storage.models import TaskRecord, TaskStatus

TModel = TypeVar("TModel", bound=BaseModel)

SyncSource = Literal["cache", "remote", "degraded"]


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CreateAccountRequest(StrictModel):
    name: str = Field(min_length=1, max_length=255)
    api_key: str = Field(min_length=1, repr=False)
    api_base_url: str | None = None

    @field_validator("name", "api_key")
    @classmethod
    def reject_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("api_base_url")
    @classmethod
    def require_http_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("must be an absolute http(s) URL")
        return value


class AccountTestResult(BaseModel):
    success: bool
    message: str


class ListRemoteTasksRequest(StrictModel):
    limit: int | None = Field(default=None, ge=1, le=100)
    status: list[str] = Field(default_factory=list)
    order: ListOrder | None = None


class CreateTaskRequest(StrictModel):
    account_id: str = Field(min_length=1)
    prompt: str = Field(min_length=1)
    agent_profile: AgentProfile = "manus-1.6"
    task_mode: TaskMode = "agent"
    project_id: str | None = None
    attachments: list[Attachment] = Field(default_factory=list)
    hide_in_task_list: bool = False
    create_shareable_link: bool = False


class ContinueTaskRequest(StrictModel):
    prompt: str = Field(min_length=1)
    attachments: list[Attachment] = Field(default_factory=list)


class TaskSync(BaseModel):
    """Result of a full task read; ``source`` tells where the data came from."""

    task: TaskRecord
    source: SyncSource
    detail: str | None = None


class TaskPoll(BaseModel):
    task_id: str
    remote_task_id: str
    status: TaskStatus
    source: SyncSource
    detail: str | None = None


def validate_input(model: type[TModel], payload: Any) -> TModel:
    """Coerce caller input into ``model`` or raise :class:`ValidationError`."""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        errors = [
            {"loc": [str(part) for part in item.get("loc", ())], "msg": item.get("msg", "")}
            for item in exc.errors()
        ]
        fields = ", ".join(".".join(item["loc"]) or "body" for item in errors)
        raise ValidationError(f"Invalid {model.__name__}: {fields}", errors=errors) from exc
