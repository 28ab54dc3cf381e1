"""Storage backends and models."""

from manus_relay.storage.base import RelayStorage
from manus_relay.storage.memory import InMemoryRelayStorage
from manus_relay.storage.models import (
    AccountRecord,
    AccountSummary,
    ContentBlock,
    ConversationMessage,
    NewTask,
    TaskChanges,
    TaskRecord,
)
from manus_relay.storage.postgres import DatabaseHandle, PostgresRelayStorage, get_database_handle

__all__ = [
    "AccountRecord",
    "AccountSummary",
    "ContentBlock",
    "ConversationMessage",
    "DatabaseHandle",
    "InMemoryRelayStorage",
    "NewTask",
    "PostgresRelayStorage",
    "RelayStorage",
    "TaskChanges",
    "TaskRecord",
    "get_database_handle",
]
