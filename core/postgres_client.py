"""
PostgreSQL Client Wrapper

Centralized PostgreSQL access built on an asyncpg connection pool.
Provides service discovery integration and a consistent database access pattern.

Usage:
    from core.postgres_client import PostgresClientWrapper

    db = PostgresClientWrapper("campaign_service", config=ConfigManager("campaign_service"))

    # Execute queries
    async with db:
        rows = await db.query("SELECT * FROM campaign.campaigns WHERE segment_id = $1", [segment_id])

    # Multi-statement transaction
    async with db.transaction() as conn:
        await conn.execute("INSERT ...")
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from core.config_manager import ConfigManager

logger = logging.getLogger(__name__)


class PostgresClientWrapper:
    """
    PostgreSQL client wrapper with service discovery integration.

    Wraps an asyncpg pool and provides:
    - Service discovery for host/port configuration
    - Lazy pool creation on first use
    - Dict rows for query results
    """

    def __init__(
        self,
        service_name: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
        database: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        config: Optional[ConfigManager] = None,
    ):
        """
        Initialize PostgreSQL client wrapper.

        Args:
            service_name: Name of the service using this client
            host: PostgreSQL host (defaults to env/service discovery)
            port: PostgreSQL port (defaults to 5432)
            database: Database name
            username: Database username
            password: Database password
            config: Config manager (created for service_name if omitted)
        """
        self.service_name = service_name
        config = config or ConfigManager(service_name)
        infra = config.infrastructure

        discovered_host, discovered_port = config.discover_service(
            service_name="postgres_service",
            default_host=infra.postgres_host,
            default_port=infra.postgres_port,
            env_host_key="POSTGRES_HOST",
            env_port_key="POSTGRES_PORT",
        )

        # Apply overrides
        self.host = host or discovered_host
        self.port = port or discovered_port
        self.database = database or infra.postgres_db
        self.username = username or infra.postgres_user
        self.password = password if password is not None else infra.postgres_password
        self.min_size = infra.postgres_min_pool_size
        self.max_size = infra.postgres_max_pool_size

        self._pool: Optional[asyncpg.Pool] = None

        logger.info(f"PostgreSQL client initialized for {service_name}: {self.host}:{self.port}/{self.database}")

    async def connect(self) -> asyncpg.Pool:
        """Create the connection pool if it does not exist yet"""
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                host=self.host,
                port=self.port,
                database=self.database,
                user=self.username,
                password=self.password,
                min_size=self.min_size,
                max_size=self.max_size,
            )
        return self._pool

    async def __aenter__(self):
        """Async context manager entry"""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Pool stays open across context blocks; close() releases it"""
        return None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection and run the block inside a transaction"""
        pool = await self.connect()
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> bool:
        """Check database health"""
        try:
            row = await self.query_row("SELECT 1 AS healthy")
            return row is not None
        except Exception as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return False

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute query and return results"""
        pool = await self.connect()
        records = await pool.fetch(sql, *(params or []))
        return [dict(r) for r in records]

    async def query_row(self, sql: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute query and return single row"""
        pool = await self.connect()
        record = await pool.fetchrow(sql, *(params or []))
        return dict(record) if record is not None else None

    async def execute(self, sql: str, params: Optional[List[Any]] = None) -> str:
        """Execute SQL statement, returning the command status tag"""
        pool = await self.connect()
        return await pool.execute(sql, *(params or []))

    async def close(self):
        """Close the pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

