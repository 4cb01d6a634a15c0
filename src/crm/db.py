"""Connection settings, database provisioning and the asyncpg pool for the CRM."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, urlparse

import asyncpg

from crm.config import DatabaseConfig

logger = logging.getLogger(__name__)

SSL_MODES = frozenset({"disable", "prefer", "allow", "require", "verify-ca", "verify-full"})
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class ConnectionParams:
    host: str = "localhost"
    port: int = 5432
    user: str = "crm"
    password: str = "crm"
    ssl: str | None = None


def parse_ssl_mode(value: str | None) -> str | None:
    """Lower-case a libpq ``sslmode``; unknown or empty values yield None."""
    mode = (value or "").strip().lower()
    if not mode:
        return None
    if mode not in SSL_MODES:
        logger.warning("Ignoring unknown sslmode %r", value)
        return None
    return mode


def connection_params_from_env() -> ConnectionParams:
    """Resolve credentials from ``DATABASE_URL``, else the ``POSTGRES_*`` variables."""
    url = os.environ.get("DATABASE_URL")
    if url:
        parsed = urlparse(url)
        return ConnectionParams(
            host=parsed.hostname or "localhost",
            port=parsed.port or 5432,
            user=parsed.username or "crm",
            password=parsed.password or "crm",
            ssl=parse_ssl_mode(parse_qs(parsed.query).get("sslmode", [None])[0]),
        )
    return ConnectionParams(
        host=os.environ.get("POSTGRES_HOST", "localhost"),
        port=int(os.environ.get("POSTGRES_PORT", "5432")),
        user=os.environ.get("POSTGRES_USER", "crm"),
        password=os.environ.get("POSTGRES_PASSWORD", "crm"),
        ssl=parse_ssl_mode(os.environ.get("POSTGRES_SSLMODE")),
    )


def schema_search_path(schema: str | None) -> str | None:
    """``search_path`` putting *schema* ahead of ``public``, or None when unset."""
    name = (schema or "").strip()
    if not name:
        return None
    if not _IDENTIFIER.fullmatch(name):
        raise ValueError(f"Invalid schema name: {schema!r}")
    return "public" if name == "public" else f"{name},public"


class Database:
    """Owns one CRM database: creates it on demand and holds its pool."""

    def __init__(
        self,
        db_name: str,
        params: ConnectionParams | None = None,
        *,
        schema: str | None = None,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
    ) -> None:
        self.db_name = db_name
        self.params = params or ConnectionParams()
        self.search_path = schema_search_path(schema)
        self.schema = schema.strip() if self.search_path else None
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: asyncpg.Pool | None = None

    @classmethod
    def from_env(cls, config: DatabaseConfig | None = None) -> Database:
        config = config or DatabaseConfig()
        return cls(
            config.name,
            connection_params_from_env(),
            schema=config.schema,
            min_pool_size=config.min_pool_size,
            max_pool_size=config.max_pool_size,
        )

    def _connect_kwargs(self, database: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "host": self.params.host,
            "port": self.params.port,
            "user": self.params.user,
            "password": self.params.password,
            "database": database,
        }
        if self.params.ssl is not None:
            kwargs["ssl"] = self.params.ssl
        return kwargs

    async def provision(self) -> None:
        """Create the database through the ``postgres`` maintenance database if missing."""
        conn = await asyncpg.connect(**self._connect_kwargs("postgres"))
        try:
            exists = await conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", self.db_name)
            if exists:
                logger.info("Database already exists: %s", self.db_name)
                return
            # CREATE DATABASE takes no bind parameters
            quoted = self.db_name.replace('"', '""')
            await conn.execute(f'CREATE DATABASE "{quoted}" TEMPLATE template0')
            logger.info("Created database: %s", self.db_name)
        finally:
            await conn.close()

    async def connect(self) -> asyncpg.Pool:
        kwargs = self._connect_kwargs(self.db_name)
        kwargs.update(min_size=self.min_pool_size, max_size=self.max_pool_size)
        if self.search_path is not None:
            kwargs["server_settings"] = {"search_path": self.search_path}
        self.pool = await asyncpg.create_pool(**kwargs)
        logger.info("Connection pool created for: %s", self.db_name)
        return self.pool

    async def close(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None
        logger.info("Connection pool closed for: %s", self.db_name)
