"""Shared fixtures for the CRM test suite.

DB-backed tests share one ``postgres:16`` testcontainer per session; every
``pool`` fixture usage provisions a brand-new database with the CRM schema,
so rows never leak between tests.
"""

from __future__ import annotations

import shutil
import uuid
from collections.abc import AsyncIterator, Iterator
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock, MagicMock

import pytest

if TYPE_CHECKING:
    from asyncpg.pool import Pool
    from testcontainers.postgres import PostgresContainer

docker_available = shutil.which("docker") is not None


def _unique_test_db_name() -> str:
    return f"test_{uuid.uuid4().hex[:12]}"


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """Session-wide Postgres container; skipped when Docker is missing."""
    if not docker_available:
        pytest.skip("Docker not available")
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:16") as pg:
        yield pg


@pytest.fixture
async def pool(postgres_container: PostgresContainer) -> AsyncIterator[Pool]:
    """Provision a fresh database with the CRM tables and return its pool."""
    from crm.db import ConnectionParams, Database
    from crm.schema import ensure_schema

    params = ConnectionParams(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        user=postgres_container.username,
        password=postgres_container.password,
    )
    db = Database(
        _unique_test_db_name(),
        params,
        min_pool_size=1,
        max_pool_size=5,
    )
    await db.provision()
    p = await db.connect()
    await ensure_schema(p)
    yield p
    await db.close()


# ---------------------------------------------------------------------------
# Mock-pool helpers for unit tests
# ---------------------------------------------------------------------------


def make_row(**overrides: Any) -> dict[str, Any]:
    """A dict standing in for an ``asyncpg.Record`` (both support ``row[key]``)."""
    now = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    row: dict[str, Any] = {
        "id": uuid.uuid4(),
        "owner_id": "owner-1",
        "created_at": now,
        "updated_at": now,
    }
    row.update(overrides)
    return row


def tag_row(name: str = "vip", **overrides: Any) -> dict[str, Any]:
    values: dict[str, Any] = {"color": "#3B82F6", "usage_count": 1}
    values.update(overrides)
    return make_row(name=name, **values)


def contact_row(name: str = "Ada", email: str = "ada@example.com", **overrides: Any) -> dict:
    values: dict[str, Any] = {
        "phone": None,
        "company": None,
        "notes": None,
        "tag_ids": [],
        "last_interaction_at": datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
    }
    values.update(overrides)
    return make_row(name=name, email=email, **values)


@pytest.fixture
def mock_pool() -> MagicMock:
    """A pool whose query methods are ``AsyncMock``s returning empty results."""
    p = MagicMock()
    p.fetch = AsyncMock(return_value=[])
    p.fetchrow = AsyncMock(return_value=None)
    p.fetchval = AsyncMock(return_value=0)
    p.execute = AsyncMock(return_value="OK")
    return p
