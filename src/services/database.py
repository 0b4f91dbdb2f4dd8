"""asyncpg connection pool for the Live Data Postgres database.

One module-level pool is created at app startup and shared by the token
store, the record store and the health check.  ``apply_schema()`` runs the
bundled ``schema.sql``; every statement in it is idempotent.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator

import asyncpg

from src.config import ConfigurationError, Settings, get_settings

logger = logging.getLogger("livedata.db")

_SCHEMA_PATH = Path(__file__).parent / "schema.sql"

# Module-level connection pool — initialized once at app startup
_pool: asyncpg.Pool | None = None


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup.

    Raises:
        ConfigurationError: If POSTGRES_URL is not set.
    """
    global _pool
    s = settings or get_settings()
    s.require("postgres_url")
    _pool = await asyncpg.create_pool(
        s.postgres_url,
        min_size=1,
        max_size=10,
        command_timeout=30,
    )
    logger.info("Database pool initialized (min=1, max=10)")
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise ConfigurationError("Database pool not initialized — is POSTGRES_URL set?")
    return _pool


@asynccontextmanager
async def get_connection() -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a pooled connection.

    Usage::

        async with get_connection() as conn:
            rows = await conn.fetch("SELECT * FROM whoop_recovery WHERE user_id = $1", uid)

    Statements run in autocommit mode; open ``conn.transaction()`` explicitly
    when several writes must land together.
    """
    pool = get_pool()
    async with pool.acquire() as conn:
        yield conn


async def apply_schema(path: Path | None = None) -> None:
    """Create the tables and indexes if they do not exist yet."""
    sql = (path or _SCHEMA_PATH).read_text(encoding="utf-8")
    async with get_connection() as conn:
        await conn.execute(sql)
    logger.info("Applied schema from %s", (path or _SCHEMA_PATH).name)


async def fetchval(query: str, *args: Any) -> Any:
    async with get_connection() as conn:
        return await conn.fetchval(query, *args)
