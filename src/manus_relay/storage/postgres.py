"""PostgreSQL-backed storage with automatic table migration."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from manus_relay.errors import DatabaseUnavailableError
from manus_relay.storage.models import (
    AccountRecord,
    AccountSummary,
    ConversationMessage,
    NewTask,
    TaskChanges,
    TaskRecord,
)

logger = logging.getLogger(__name__)

_JSON_COLUMNS = frozenset({"conversation_history"})


class DatabaseHandle:
    """Process-wide connection, opened on first use and kept for the process lifetime."""

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        self._connection: Any = None
        self._open_lock = threading.Lock()
        # Serializes statements issued through the shared connection.
        self.lock = threading.RLock()

    @property
    def configured(self) -> bool:
        return bool(self.database_url)

    def connection(self) -> Any:
        if not self.database_url:
            raise DatabaseUnavailableError("Database not available: no database URL configured")
        if self._connection is not None and not self._connection.closed:
            return self._connection
        with self._open_lock:
            if self._connection is None or self._connection.closed:
                psycopg, dict_row, _ = _load_psycopg()
                self._connection = psycopg.connect(
                    self.database_url,
                    row_factory=dict_row,
                    autocommit=True,
                )
                logger.info("database event=connected")
        return self._connection

    def close(self) -> None:
        with self._open_lock:
            if self._connection is not None and not self._connection.closed:
                self._connection.close()
            self._connection = None


@lru_cache(maxsize=None)
def get_database_handle(database_url: str) -> DatabaseHandle:
    return DatabaseHandle(database_url)


class PostgresRelayStorage:
    """Persist accounts and tasks in PostgreSQL through an injected handle."""

    def __init__(self, handle: DatabaseHandle) -> None:
        self._handle = handle
        self._json_wrapper = _load_psycopg()[2]

    def migrate(self) -> None:
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    account_id UUID PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name VARCHAR(255) NOT NULL,
                    api_key_encrypted TEXT NOT NULL,
                    api_base_url VARCHAR(512) NOT NULL DEFAULT 'https://api.manus.im',
                    is_default BOOLEAN NOT NULL DEFAULT FALSE,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_accounts_user_id
                ON accounts(user_id)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id UUID PRIMARY KEY,
                    remote_task_id VARCHAR(128) NOT NULL,
                    user_id TEXT NOT NULL,
                    account_id UUID NOT NULL,
                    title VARCHAR(512) NOT NULL DEFAULT 'Untitled Task',
                    status TEXT NOT NULL DEFAULT 'unknown',
                    agent_profile VARCHAR(64) NOT NULL DEFAULT 'manus-1.6',
                    task_mode VARCHAR(32) NOT NULL DEFAULT 'agent',
                    project_id VARCHAR(128),
                    task_url VARCHAR(512),
                    share_url VARCHAR(512),
                    credit_usage INTEGER NOT NULL DEFAULT 0,
                    conversation_history JSONB NOT NULL DEFAULT '[]'::jsonb,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            # Additive columns for databases created before these fields existed.
            conn.execute("""
                ALTER TABLE tasks
                ADD COLUMN IF NOT EXISTS share_url VARCHAR(512)
                """)
            conn.execute("""
                ALTER TABLE tasks
                ADD COLUMN IF NOT EXISTS project_id VARCHAR(128)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_user_updated_at
                ON tasks(user_id, updated_at DESC)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_remote_task_id
                ON tasks(remote_task_id)
                """)

    # ---- accounts ----

    def create_account(
        self,
        *,
        user_id: str,
        name: str,
        api_key_encrypted: str,
        api_base_url: str,
    ) -> AccountRecord:
        account_id = uuid.uuid4()
        now = datetime.now(tz=UTC)
        with self._transaction() as conn:
            row = conn.execute(
                """
                INSERT INTO accounts (
                    account_id,
                    user_id,
                    name,
                    api_key_encrypted,
                    api_base_url,
                    is_default,
                    created_at,
                    updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (account_id, user_id, name, api_key_encrypted, api_base_url, False, now, now),
            ).fetchone()
        if row is None:
            raise RuntimeError("Failed to persist account")
        return self._row_to_account(row)

    def list_accounts(self, user_id: str) -> list[AccountSummary]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM accounts
                WHERE user_id = %s
                ORDER BY is_default DESC, created_at DESC
                """,
                (user_id,),
            ).fetchall()
        return [self._row_to_account(row).summary() for row in rows]

    def get_account(self, account_id: str, user_id: str) -> AccountRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE account_id::text = %s AND user_id = %s",
                (account_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_account(row)

    def delete_account(self, account_id: str, user_id: str) -> int:
        with self._transaction() as conn:
            deleted_tasks = conn.execute(
                "DELETE FROM tasks WHERE account_id::text = %s AND user_id = %s",
                (account_id, user_id),
            ).rowcount
            conn.execute(
                "DELETE FROM accounts WHERE account_id::text = %s AND user_id = %s",
                (account_id, user_id),
            )
        return max(deleted_tasks, 0)

    def set_default_account(self, account_id: str, user_id: str) -> None:
        now = datetime.now(tz=UTC)
        with self._transaction() as conn:
            conn.execute(
                "UPDATE accounts SET is_default = FALSE, updated_at = %s WHERE user_id = %s",
                (now, user_id),
            )
            conn.execute(
                """
                UPDATE accounts
                SET is_default = TRUE,
                    updated_at = %s
                WHERE account_id::text = %s AND user_id = %s
                """,
                (now, account_id, user_id),
            )

    # ---- tasks ----

    def create_task(self, task: NewTask) -> TaskRecord:
        task_id = uuid.uuid4()
        now = datetime.now(tz=UTC)
        with self._transaction() as conn:
            row = conn.execute(
                """
                INSERT INTO tasks (
                    task_id,
                    remote_task_id,
                    user_id,
                    account_id,
                    title,
                    status,
                    agent_profile,
                    task_mode,
                    project_id,
                    task_url,
                    share_url,
                    credit_usage,
                    conversation_history,
                    created_at,
                    updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    task_id,
                    task.remote_task_id,
                    task.user_id,
                    task.account_id,
                    task.title,
                    task.status,
                    task.agent_profile,
                    task.task_mode,
                    task.project_id,
                    task.task_url,
                    task.share_url,
                    task.credit_usage,
                    self._history_json(task.conversation_history),
                    now,
                    now,
                ),
            ).fetchone()
        if row is None:
            raise RuntimeError("Failed to persist task")
        return self._row_to_task(row)

    def get_task(self, task_id: str, user_id: str) -> TaskRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE task_id::text = %s AND user_id = %s",
                (task_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def get_task_by_remote_id(self, remote_task_id: str, user_id: str) -> TaskRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE remote_task_id = %s AND user_id = %s
                LIMIT 1
                """,
                (remote_task_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(self, user_id: str, account_id: str | None = None) -> list[TaskRecord]:
        query = "SELECT * FROM tasks WHERE user_id = %s"
        params: list[Any] = [user_id]
        if account_id is not None:
            query += " AND account_id::text = %s"
            params.append(account_id)
        query += " ORDER BY updated_at DESC"
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_task(row) for row in rows]

    def update_task(self, task_id: str, user_id: str, changes: TaskChanges) -> TaskRecord | None:
        update = changes.as_update()
        assignments: list[str] = []
        params: list[Any] = []
        for column, value in update.items():
            assignments.append(f"{column} = %s")
            if column in _JSON_COLUMNS:
                params.append(self._history_json(value or []))
            else:
                params.append(value)
        assignments.append("updated_at = %s")
        params.append(datetime.now(tz=UTC))
        params.extend([task_id, user_id])

        # Column names come from TaskChanges fields, never from caller input.
        statement = (
            f"UPDATE tasks SET {', '.join(assignments)} "
            "WHERE task_id::text = %s AND user_id = %s RETURNING *"
        )
        with self._transaction() as conn:
            row = conn.execute(statement, params).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def delete_task(self, task_id: str, user_id: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM tasks WHERE task_id::text = %s AND user_id = %s",
                (task_id, user_id),
            )

    # ---- helpers ----

    @contextmanager
    def _transaction(self) -> Iterator[Any]:
        """Hold the handle lock and run statements inside one database transaction."""
        with self._handle.lock:
            conn = self._handle.connection()
            with conn.transaction():
                yield conn

    def _history_json(self, history: list[ConversationMessage]) -> Any:
        return self._json_wrapper(
            [message.model_dump(mode="json", exclude_none=True) for message in history]
        )

    @staticmethod
    def _parse_json_list(raw: Any) -> list[dict[str, Any]]:
        if raw is None:
            return []
        if isinstance(raw, str):
            parsed = json.loads(raw)
        else:
            parsed = raw
        if not isinstance(parsed, list):
            return []
        return [item for item in parsed if isinstance(item, dict)]

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_account(cls, row: Any) -> AccountRecord:
        return AccountRecord(
            account_id=str(row["account_id"]),
            user_id=str(row["user_id"]),
            name=row["name"],
            api_key_encrypted=row["api_key_encrypted"],
            api_base_url=row["api_base_url"],
            is_default=bool(row["is_default"]),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )

    @classmethod
    def _row_to_task(cls, row: Any) -> TaskRecord:
        return TaskRecord(
            task_id=str(row["task_id"]),
            remote_task_id=row["remote_task_id"],
            user_id=str(row["user_id"]),
            account_id=str(row["account_id"]),
            title=row.get("title") or "Untitled Task",
            status=row["status"],
            agent_profile=row.get("agent_profile") or "manus-1.6",
            task_mode=row.get("task_mode") or "agent",
            project_id=row.get("project_id"),
            task_url=row.get("task_url"),
            share_url=row.get("share_url"),
            credit_usage=int(row.get("credit_usage") or 0),
            conversation_history=[
                ConversationMessage.model_validate(item)
                for item in cls._parse_json_list(row.get("conversation_history"))
            ],
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )


def _load_psycopg() -> tuple[Any, Any, Any]:
    try:
        import psycopg
        from psycopg.rows import dict_row
        from psycopg.types.json import Json
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError(
            "PostgreSQL storage requires psycopg. "
            'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
        ) from exc
    return psycopg, dict_row, Json
