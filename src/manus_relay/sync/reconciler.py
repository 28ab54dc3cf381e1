"""Merge upstream task responses into locally persisted task state.

Pure functions only: callers fetch remote state and persist what these return.

Rules per operation:

- create: history is seeded with the user's prompt followed by the assistant
  messages of the response. The upstream echoes the user's own input in its
  output, so only ``role == "assistant"`` messages are appended.
- continue: the prompt and new assistant messages are appended, credit usage
  is added to the running total, and ``remote_task_id`` moves to the id of this
  response so the next turn chains off the latest one.
- sync (full get): a non-empty remote output replaces the whole local history,
  credit usage is replaced by the remote cumulative value.
- poll: only the status is written, and only when it changed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable

from manus_relay.remote.models import Attachment, RemoteOutputMessage, RemoteTaskResponse
from manus_relay.storage.models import (
    DEFAULT_TASK_TITLE,
    TASK_STATUSES,
    TERMINAL_STATUSES,
    ContentBlock,
    ConversationMessage,
    NewTask,
    TaskChanges,
    TaskRecord,
    TaskStatus,
)

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 100
POLLABLE_STATUSES: frozenset[str] = frozenset({"pending", "running"})
FILE_OUTPUT_TYPE = "output_file"


def now_ms() -> int:
    return int(time.time() * 1000)


def normalize_status(raw: str | None) -> TaskStatus:
    value = (raw or "").strip().lower()
    if value in TASK_STATUSES:
        return value  # type: ignore[return-value]
    return "unknown"


def parse_credit_usage(raw: str | None) -> int | None:
    """Parse the upstream credit counter; ``None`` when absent or unreadable."""
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        pass
    try:
        return int(float(raw.strip()))
    except ValueError:
        logger.warning("task_sync event=bad_credit_usage value=%r", raw[:32])
        return None


def needs_remote_sync(task: TaskRecord) -> bool:
    return task.status not in TERMINAL_STATUSES


def needs_poll(task: TaskRecord) -> bool:
    return task.status in POLLABLE_STATUSES


def parse_remote_output(
    output: Iterable[RemoteOutputMessage], *, timestamp: int | None = None
) -> list[ConversationMessage]:
    """Convert upstream output messages into conversation messages.

    Content items carrying a file url or tagged ``output_file`` become file
    blocks, everything else becomes text. Messages with roles other than
    user/assistant are dropped.
    """
    stamp = now_ms() if timestamp is None else timestamp
    messages: list[ConversationMessage] = []
    for message in output:
        role = message.role.strip().lower()
        if role not in {"user", "assistant"}:
            continue
        blocks: list[ContentBlock] = []
        for item in message.content:
            if item.type == FILE_OUTPUT_TYPE or item.file_url:
                blocks.append(
                    ContentBlock(
                        type="file",
                        text=item.text,
                        file_url=item.file_url,
                        file_name=item.file_name,
                        mime_type=item.mime_type,
                    )
                )
            else:
                blocks.append(ContentBlock(type="text", text=item.text or ""))
        messages.append(
            ConversationMessage(id=message.id, role=role, content=blocks, timestamp=stamp)
        )
    return messages


def assistant_messages(
    output: Iterable[RemoteOutputMessage], *, timestamp: int | None = None
) -> list[ConversationMessage]:
    return [
        message
        for message in parse_remote_output(output, timestamp=timestamp)
        if message.role == "assistant"
    ]


def user_message(
    prompt: str,
    attachments: Iterable[Attachment] = (),
    *,
    timestamp: int | None = None,
) -> ConversationMessage:
    blocks = [ContentBlock(type="text", text=prompt)]
    for attachment in attachments:
        if not attachment.file_url:
            continue
        kind = "image" if _is_image(attachment) else "file"
        blocks.append(
            ContentBlock(
                type=kind,
                file_url=attachment.file_url,
                file_name=attachment.file_name,
                mime_type=attachment.mime_type,
            )
        )
    return ConversationMessage(
        role="user",
        content=blocks,
        timestamp=now_ms() if timestamp is None else timestamp,
    )


def reconcile_create(
    response: RemoteTaskResponse,
    *,
    prompt: str,
    user_id: str,
    account_id: str,
    agent_profile: str,
    task_mode: str,
    project_id: str | None = None,
    attachments: Iterable[Attachment] = (),
    timestamp: int | None = None,
) -> NewTask:
    stamp = now_ms() if timestamp is None else timestamp
    history = [user_message(prompt, attachments, timestamp=stamp)]
    history.extend(assistant_messages(response.output, timestamp=stamp))
    metadata = response.metadata
    return NewTask(
        remote_task_id=response.id,
        user_id=user_id,
        account_id=account_id,
        title=metadata.task_title or prompt[:TITLE_MAX_CHARS] or DEFAULT_TASK_TITLE,
        status=normalize_status(response.status),
        agent_profile=agent_profile,
        task_mode=task_mode,
        project_id=project_id or None,
        task_url=metadata.task_url or None,
        share_url=metadata.share_url or None,
        credit_usage=parse_credit_usage(metadata.credit_usage) or 0,
        conversation_history=history,
    )


def reconcile_continue(
    task: TaskRecord,
    response: RemoteTaskResponse,
    *,
    prompt: str,
    attachments: Iterable[Attachment] = (),
    timestamp: int | None = None,
) -> TaskChanges:
    stamp = now_ms() if timestamp is None else timestamp
    history = list(task.conversation_history)
    history.append(user_message(prompt, attachments, timestamp=stamp))
    history.extend(assistant_messages(response.output, timestamp=stamp))

    credit_usage = task.credit_usage
    turn_usage = parse_credit_usage(response.metadata.credit_usage)
    if turn_usage is not None:
        credit_usage += turn_usage

    remote_status = normalize_status(response.status)
    return TaskChanges(
        remote_task_id=response.id,
        status=task.status if remote_status == "unknown" else remote_status,
        task_url=response.metadata.task_url or task.task_url,
        credit_usage=credit_usage,
        conversation_history=history,
    )


def reconcile_sync(
    task: TaskRecord,
    response: RemoteTaskResponse,
    *,
    timestamp: int | None = None,
) -> TaskChanges:
    metadata = response.metadata
    changes = TaskChanges(status=normalize_status(response.status))
    if metadata.task_title and task.title == DEFAULT_TASK_TITLE:
        changes.title = metadata.task_title
    credit_usage = parse_credit_usage(metadata.credit_usage)
    if credit_usage is not None:
        changes.credit_usage = credit_usage
    if metadata.task_url:
        changes.task_url = metadata.task_url
    if response.output:
        # Authoritative overwrite: local messages not yet visible upstream are dropped.
        changes.conversation_history = parse_remote_output(response.output, timestamp=timestamp)
    return changes


def reconcile_poll(task: TaskRecord, response: RemoteTaskResponse) -> TaskChanges:
    status = normalize_status(response.status)
    if status == task.status:
        return TaskChanges()
    return TaskChanges(status=status)


def _is_image(attachment: Attachment) -> bool:
    if attachment.mime_type and attachment.mime_type.startswith("image/"):
        return True
    return "image" in attachment.type
