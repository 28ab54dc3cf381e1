"""Account operations: store encrypted keys, choose a default, test connectivity."""

from __future__ import annotations

import logging
from typing import Any

from manus_relay.config.settings import DEFAULT_API_BASE_URL
from manus_relay.errors import AuthenticationError, NotFoundError, TransportError
from manus_relay.remote.client import RemoteTaskClient
from manus_relay.remote.models import Credentials, ListRemoteTasks, RemoteTaskList
from manus_relay.security.vault import CredentialVault
from manus_relay.services.schemas import (
    AccountTestResult,
    CreateAccountRequest,
    ListRemoteTasksRequest,
    validate_input,
)
from manus_relay.storage.base import RelayStorage
from manus_relay.storage.models import AccountRecord, AccountSummary

logger = logging.getLogger(__name__)

INVALID_KEY_MESSAGE = "Invalid API Key. Please check and try again."
FORBIDDEN_KEY_MESSAGE = "API Key does not have sufficient permissions."
VALID_KEY_MESSAGE = "API Key is valid. Connection successful."
UNREADABLE_KEY_MESSAGE = "Stored API Key could not be decrypted."


class AccountService:
    def __init__(
        self,
        *,
        storage: RelayStorage,
        vault: CredentialVault,
        client: RemoteTaskClient,
        default_api_base_url: str = DEFAULT_API_BASE_URL,
    ) -> None:
        self.storage = storage
        self.vault = vault
        self.client = client
        self.default_api_base_url = default_api_base_url

    def create_account(
        self, user_id: str, payload: CreateAccountRequest | dict[str, Any]
    ) -> AccountSummary:
        request = validate_input(CreateAccountRequest, payload)
        record = self.storage.create_account(
            user_id=user_id,
            name=request.name,
            api_key_encrypted=self.vault.encrypt(request.api_key),
            api_base_url=request.api_base_url or self.default_api_base_url,
        )
        logger.info(
            "account event=created account_id=%s user_id=%s base_url=%s",
            record.account_id,
            user_id,
            record.api_base_url,
        )
        return record.summary()

    def list_accounts(self, user_id: str) -> list[AccountSummary]:
        return self.storage.list_accounts(user_id)

    def delete_account(self, user_id: str, account_id: str) -> int:
        """Delete the account and its local tasks; returns the number of tasks removed."""
        self.require_account(user_id, account_id)
        removed_tasks = self.storage.delete_account(account_id, user_id)
        logger.info(
            "account event=deleted account_id=%s user_id=%s removed_tasks=%d",
            account_id,
            user_id,
            removed_tasks,
        )
        return removed_tasks

    def set_default_account(self, user_id: str, account_id: str) -> None:
        self.require_account(user_id, account_id)
        self.storage.set_default_account(account_id, user_id)
        logger.info("account event=default_set account_id=%s user_id=%s", account_id, user_id)

    def test_account(self, user_id: str, account_id: str) -> AccountTestResult:
        account = self.require_account(user_id, account_id)
        try:
            credentials = self.credentials_for(account)
            self.client.list_tasks(credentials, ListRemoteTasks(limit=1))
        except AuthenticationError:
            logger.error(
                "account event=test_failed account_id=%s reason=undecryptable_key",
                account_id,
            )
            return AccountTestResult(success=False, message=UNREADABLE_KEY_MESSAGE)
        except TransportError as exc:
            logger.info(
                "account event=test_failed account_id=%s status=%s",
                account_id,
                exc.status_code,
            )
            return AccountTestResult(success=False, message=classify_transport_error(exc))
        return AccountTestResult(success=True, message=VALID_KEY_MESSAGE)

    def list_remote_tasks(
        self,
        user_id: str,
        account_id: str,
        payload: ListRemoteTasksRequest | dict[str, Any] | None = None,
    ) -> RemoteTaskList:
        request = validate_input(ListRemoteTasksRequest, payload or {})
        credentials = self.credentials_for(self.require_account(user_id, account_id))
        return self.client.list_tasks(
            credentials,
            ListRemoteTasks(limit=request.limit, status=request.status, order=request.order),
        )

    def require_account(self, user_id: str, account_id: str) -> AccountRecord:
        account = self.storage.get_account(account_id, user_id)
        if account is None:
            raise NotFoundError("Account not found")
        return account

    def credentials_for(self, account: AccountRecord) -> Credentials:
        return Credentials(
            api_key=self.vault.decrypt(account.api_key_encrypted),
            base_url=account.api_base_url,
        )


def classify_transport_error(exc: TransportError) -> str:
    if exc.status_code == 401:
        return INVALID_KEY_MESSAGE
    if exc.status_code == 403:
        return FORBIDDEN_KEY_MESSAGE
    return f"Connection failed: {exc}"
