from __future__ import annotations

import os
import uuid
from collections.abc import Iterator

import pytest

from manus_relay.storage.postgres import DatabaseHandle, PostgresRelayStorage


@pytest.fixture
def postgres_storage() -> Iterator[PostgresRelayStorage]:
    if os.getenv("RUN_POSTGRES_INTEGRATION_TESTS") != "1":
        pytest.skip(
            "Set RUN_POSTGRES_INTEGRATION_TESTS=1 and MANUS_RELAY_DATABASE_URL "
            "to run integration tests against PostgreSQL."
        )
    database_url = os.getenv("MANUS_RELAY_DATABASE_URL")
    if not database_url:
        pytest.skip("MANUS_RELAY_DATABASE_URL is required for integration tests.")

    handle = DatabaseHandle(database_url)
    storage = PostgresRelayStorage(handle)
    storage.migrate()
    yield storage
    handle.close()


@pytest.fixture
def user_id() -> str:
    # Fresh owner per test keeps rows from earlier runs out of the assertions.
    return f"it-{uuid.uuid4()}"
