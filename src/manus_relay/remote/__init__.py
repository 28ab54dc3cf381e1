"""Client for the upstream MANUS task API."""

from manus_relay.remote.client import ManusClient, RemoteTaskClient, build_manus_client
from manus_relay.remote.models import (
    Attachment,
    ContinueRemoteTask,
    CreateRemoteTask,
    Credentials,
    ListRemoteTasks,
    RemoteContentItem,
    RemoteOutputMessage,
    RemoteTaskList,
    RemoteTaskMetadata,
    RemoteTaskResponse,
)

__all__ = [
    "Attachment",
    "ContinueRemoteTask",
    "CreateRemoteTask",
    "Credentials",
    "ListRemoteTasks",
    "ManusClient",
    "RemoteContentItem",
    "RemoteOutputMessage",
    "RemoteTaskClient",
    "RemoteTaskList",
    "RemoteTaskMetadata",
    "RemoteTaskResponse",
    "build_manus_client",
]
