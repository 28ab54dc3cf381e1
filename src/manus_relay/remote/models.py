"""Typed shapes of the upstream MANUS API, normalized at the client boundary."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

AgentProfile = Literal["manus-1.6", "manus-1.6-lite", "manus-1.6-max"]
TaskMode = Literal["chat", "adaptive", "agent"]
ListOrder = Literal["asc", "desc"]


class LenientModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _list_or_empty(value: Any) -> Any:
    if value is None:
        return []
    return value


class Credentials(BaseModel):
    """Decrypted key plus the endpoint it belongs to. Never persisted or logged."""

    api_key: str = Field(repr=False)
    base_url: str


class Attachment(BaseModel):
    """Extra input block forwarded verbatim to the upstream conversation turn."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str = Field(min_length=1)
    file_url: str | None = Field(default=None, alias="fileUrl")
    file_name: str | None = Field(default=None, alias="fileName")
    mime_type: str | None = Field(default=None, alias="mimeType")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class RemoteContentItem(LenientModel):
    type: str = "output_text"
    text: str | None = None
    file_url: str | None = Field(default=None, alias="fileUrl")
    file_name: str | None = Field(default=None, alias="fileName")
    mime_type: str | None = Field(default=None, alias="mimeType")

    @field_validator("type", mode="before")
    @classmethod
    def type_or_text(cls, value: Any) -> Any:
        if value is None:
            return "output_text"
        return value


class RemoteOutputMessage(LenientModel):
    id: str | None = None
    role: str = ""
    content: list[RemoteContentItem] = Field(default_factory=list)

    @field_validator("role", mode="before")
    @classmethod
    def role_or_empty(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value

    @field_validator("content", mode="before")
    @classmethod
    def content_or_empty(cls, value: Any) -> Any:
        return _list_or_empty(value)


class RemoteTaskMetadata(LenientModel):
    task_url: str | None = None
    share_url: str | None = None
    task_title: str | None = None
    # Reported by upstream as a decimal string.
    credit_usage: str | None = None

    @field_validator("credit_usage", mode="before")
    @classmethod
    def stringify_credit_usage(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value))
        return None


class RemoteTaskResponse(LenientModel):
    id: str = Field(min_length=1)
    status: str = "unknown"
    model: str | None = None
    metadata: RemoteTaskMetadata = Field(default_factory=RemoteTaskMetadata)
    output: list[RemoteOutputMessage] = Field(default_factory=list)

    @field_validator("output", mode="before")
    @classmethod
    def output_or_empty(cls, value: Any) -> Any:
        return _list_or_empty(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_or_empty(cls, value: Any) -> Any:
        if value is None:
            return {}
        return value

    @field_validator("status", mode="before")
    @classmethod
    def status_or_unknown(cls, value: Any) -> Any:
        if not value:
            return "unknown"
        return value


class RemoteTaskList(LenientModel):
    data: list[RemoteTaskResponse] = Field(default_factory=list)
    has_more: bool = False
    last_id: str | None = None

    @field_validator("data", mode="before")
    @classmethod
    def data_or_empty(cls, value: Any) -> Any:
        return _list_or_empty(value)


class CreateRemoteTask(BaseModel):
    prompt: str = Field(min_length=1)
    agent_profile: str = "manus-1.6"
    task_mode: str = "agent"
    project_id: str | None = None
    attachments: list[Attachment] = Field(default_factory=list)
    hide_in_task_list: bool = False
    create_shareable_link: bool = False


class ContinueRemoteTask(BaseModel):
    previous_response_id: str = Field(min_length=1)
    prompt: str = Field(min_length=1)
    agent_profile: str = "manus-1.6"
    task_mode: str = "agent"
    attachments: list[Attachment] = Field(default_factory=list)


class ListRemoteTasks(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=100)
    status: list[str] = Field(default_factory=list)
    order: ListOrder | None = None
