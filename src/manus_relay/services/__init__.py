"""Account and task operations exposed by the API."""

from manus_relay.services.accounts import AccountService
from manus_relay.services.tasks import TaskService

__all__ = ["AccountService", "TaskService"]
