"""FastAPI app entrypoint for manus-relay."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from manus_relay.config.settings import Settings, get_settings
from manus_relay.errors import (
    AuthenticationError,
    DatabaseUnavailableError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from manus_relay.logging_setup import configure_logging
from manus_relay.remote.client import RemoteTaskClient, build_manus_client
from manus_relay.remote.models import RemoteTaskList
from manus_relay.security.vault import CredentialVault, build_vault
from manus_relay.services.accounts import AccountService
from manus_relay.services.schemas import (
    AccountTestResult,
    ContinueTaskRequest,
    CreateAccountRequest,
    CreateTaskRequest,
    TaskPoll,
    TaskSync,
)
from manus_relay.services.tasks import TaskService
from manus_relay.storage.base import RelayStorage
from manus_relay.storage.models import AccountSummary, TaskRecord
from manus_relay.storage.postgres import PostgresRelayStorage, get_database_handle

logger = logging.getLogger(__name__)


def _build_storage(settings: Settings) -> RelayStorage:
    handle = get_database_handle(settings.resolved_database_url())
    storage = PostgresRelayStorage(handle)
    if handle.configured:
        storage.migrate()
    else:
        logger.warning(
            "database event=unconfigured hint=set MANUS_RELAY_DATABASE_URL or DATABASE_URL"
        )
    return storage


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: RelayStorage | None,
    client_override: RemoteTaskClient | None,
    vault_override: CredentialVault | None,
) -> None:
    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "storage"):
        app.state.storage = storage_override or _build_storage(settings)

    if not hasattr(app.state, "accounts"):
        client = client_override or build_manus_client(timeout_s=settings.remote_timeout_s)
        vault = vault_override or build_vault(settings.resolved_encryption_secret())
        app.state.accounts = AccountService(
            storage=app.state.storage,
            vault=vault,
            client=client,
            default_api_base_url=settings.default_api_base_url,
        )
        app.state.tasks = TaskService(
            storage=app.state.storage,
            accounts=app.state.accounts,
            client=client,
        )


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Resolve the caller; every operation is scoped to this id."""
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def invalid_input(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc), "errors": exc.errors})

    @app.exception_handler(TransportError)
    async def upstream_failed(_: Request, exc: TransportError) -> JSONResponse:
        return JSONResponse(
            status_code=502,
            content={"detail": "MANUS request failed", "upstream_status": exc.status_code},
        )

    @app.exception_handler(AuthenticationError)
    async def undecryptable(_: Request, exc: AuthenticationError) -> JSONResponse:
        logger.error("api event=credential_error reason=%s", exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Stored credentials could not be used"},
        )

    @app.exception_handler(DatabaseUnavailableError)
    async def database_unavailable(_: Request, exc: DatabaseUnavailableError) -> JSONResponse:
        logger.error("api event=database_unavailable reason=%s", exc)
        return JSONResponse(status_code=500, content={"detail": "Database not available"})


def create_app(
    *,
    storage: RelayStorage | None = None,
    settings_override: Settings | None = None,
    client: RemoteTaskClient | None = None,
    vault: CredentialVault | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    configure_logging(settings.log_level)

    def _ensure(app: FastAPI) -> None:
        _ensure_runtime_state(
            app,
            settings=settings,
            storage_override=storage,
            client_override=client,
            vault_override=vault,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure(app)
        yield

    app_lifespan = lifespan if storage is None else None
    app = FastAPI(title=settings.app_name, lifespan=app_lifespan)
    _register_error_handlers(app)

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        _ensure(app)

    def _accounts(request: Request) -> AccountService:
        if not hasattr(request.app.state, "accounts"):
            _ensure(request.app)
        return request.app.state.accounts

    def _tasks(request: Request) -> TaskService:
        if not hasattr(request.app.state, "tasks"):
            _ensure(request.app)
        return request.app.state.tasks

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    # ---- accounts ----

    @app.post("/accounts", response_model=AccountSummary)
    def create_account(
        payload: CreateAccountRequest,
        user_id: str = Depends(get_current_user_id),
        accounts: AccountService = Depends(_accounts),
    ) -> AccountSummary:
        return accounts.create_account(user_id, payload)

    @app.get("/accounts", response_model=list[AccountSummary])
    def list_accounts(
        user_id: str = Depends(get_current_user_id),
        accounts: AccountService = Depends(_accounts),
    ) -> list[AccountSummary]:
        return accounts.list_accounts(user_id)

    @app.delete("/accounts/{account_id}")
    def delete_account(
        account_id: str,
        user_id: str = Depends(get_current_user_id),
        accounts: AccountService = Depends(_accounts),
    ) -> dict[str, Any]:
        removed_tasks = accounts.delete_account(user_id, account_id)
        return {"success": True, "removed_tasks": removed_tasks}

    @app.post("/accounts/{account_id}/default")
    def set_default_account(
        account_id: str,
        user_id: str = Depends(get_current_user_id),
        accounts: AccountService = Depends(_accounts),
    ) -> dict[str, bool]:
        accounts.set_default_account(user_id, account_id)
        return {"success": True}

    @app.post("/accounts/{account_id}/test", response_model=AccountTestResult)
    def test_account(
        account_id: str,
        user_id: str = Depends(get_current_user_id),
        accounts: AccountService = Depends(_accounts),
    ) -> AccountTestResult:
        return accounts.test_account(user_id, account_id)

    @app.get("/accounts/{account_id}/remote-tasks", response_model=RemoteTaskList)
    def list_remote_tasks(
        account_id: str,
        limit: int | None = Query(default=None),
        status: list[str] | None = Query(default=None),
        order: str | None = Query(default=None),
        user_id: str = Depends(get_current_user_id),
        accounts: AccountService = Depends(_accounts),
    ) -> RemoteTaskList:
        payload: dict[str, Any] = {"limit": limit, "status": status or [], "order": order}
        return accounts.list_remote_tasks(user_id, account_id, payload)

    # ---- tasks ----

    @app.post("/tasks", response_model=TaskRecord)
    def create_task(
        payload: CreateTaskRequest,
        user_id: str = Depends(get_current_user_id),
        tasks: TaskService = Depends(_tasks),
    ) -> TaskRecord:
        return tasks.create_task(user_id, payload)

    @app.post("/tasks/{task_id}/continue", response_model=TaskRecord)
    def continue_task(
        task_id: str,
        payload: ContinueTaskRequest,
        user_id: str = Depends(get_current_user_id),
        tasks: TaskService = Depends(_tasks),
    ) -> TaskRecord:
        return tasks.continue_task(user_id, task_id, payload)

    @app.get("/tasks", response_model=list[TaskRecord])
    def list_tasks(
        account_id: str | None = Query(default=None),
        user_id: str = Depends(get_current_user_id),
        tasks: TaskService = Depends(_tasks),
    ) -> list[TaskRecord]:
        return tasks.list_tasks(user_id, account_id)

    @app.get("/tasks/{task_id}", response_model=TaskSync)
    def get_task(
        task_id: str,
        user_id: str = Depends(get_current_user_id),
        tasks: TaskService = Depends(_tasks),
    ) -> TaskSync:
        return tasks.get_task(user_id, task_id)

    @app.get("/tasks/{task_id}/poll", response_model=TaskPoll)
    def poll_task(
        task_id: str,
        user_id: str = Depends(get_current_user_id),
        tasks: TaskService = Depends(_tasks),
    ) -> TaskPoll:
        return tasks.poll_task(user_id, task_id)

    @app.delete("/tasks/{task_id}")
    def delete_task(
        task_id: str,
        delete_remote: bool = Query(default=False),
        user_id: str = Depends(get_current_user_id),
        tasks: TaskService = Depends(_tasks),
    ) -> dict[str, bool]:
        tasks.delete_task(user_id, task_id, delete_remote=delete_remote)
        return {"success": True}

    return app


app = create_app()
