"""
PostgreSQL tuple store for the RBAC Service.
"""

import re
from typing import List, Optional

import asyncpg
from shared.logging import get_logger
from shared.errors import StoreUnavailableError
from shared.retry import RetryConfig, RetryError, retry_on_exception
from .base import TupleStore
from ..rbac.models import PersistOp, TupleRecord

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Failures worth retrying while establishing the pool
_CONNECT_ERRORS = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)


class PostgresTupleStore(TupleStore):
    """Tuple store backed by a single ``ptype, v0..v3`` table."""

    name = "postgres"

    def __init__(self, dsn: str, table_name: str = "rbac_rule", retry_config: Optional[RetryConfig] = None):
        if not _TABLE_NAME_RE.match(table_name):
            raise ValueError(f"Invalid table name: {table_name!r}")
        self.dsn = dsn
        self.table_name = table_name
        self.retry_config = retry_config or RetryConfig.fixed(max_attempts=5, delay=2.0)
        self.logger = get_logger("rbac.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Connect with bounded retry, then ensure the table exists."""
        connect = retry_on_exception(_CONNECT_ERRORS, self.retry_config)(self._connect)
        try:
            self.pool = await connect()
        except RetryError as e:
            self.logger.error(
                "Failed to start PostgreSQL tuple store",
                attempts=e.attempts,
                error=str(e.last_exception)
            )
            raise StoreUnavailableError(
                f"PostgreSQL unreachable after {e.attempts} attempts: {e.last_exception}",
                {"attempts": e.attempts}
            )

        try:
            await self._create_table()
        except _CONNECT_ERRORS as e:
            raise StoreUnavailableError(f"Cannot prepare table {self.table_name}: {e}")

        self.logger.info("PostgreSQL tuple store started", table=self.table_name)

    async def stop(self):
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL tuple store stopped")

    async def _connect(self) -> asyncpg.Pool:
        return await asyncpg.create_pool(
            self.dsn,
            min_size=1,
            max_size=10,
            command_timeout=30
        )

    async def _create_table(self):
        async with self.pool.acquire() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table_name} (
                    id BIGSERIAL PRIMARY KEY,
                    ptype VARCHAR(16) NOT NULL,
                    v0 VARCHAR(255) NOT NULL DEFAULT '',
                    v1 VARCHAR(255) NOT NULL DEFAULT '',
                    v2 VARCHAR(255) NOT NULL DEFAULT '',
                    v3 VARCHAR(255) NOT NULL DEFAULT ''
                );
            """)
            await conn.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_{self.table_name}_tuple
                ON {self.table_name}(ptype, v0, v1, v2, v3);
            """)

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise StoreUnavailableError("PostgreSQL tuple store is not started")
        return self.pool

    async def load_all(self) -> List[TupleRecord]:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    f"SELECT ptype, v0, v1, v2, v3 FROM {self.table_name} ORDER BY id"
                )
        except _CONNECT_ERRORS as e:
            self.logger.error("Error loading tuples", error=str(e))
            raise StoreUnavailableError(f"Cannot load tuples: {e}")

        records = [
            TupleRecord.from_row(row["ptype"], [row["v0"], row["v1"], row["v2"], row["v3"]])
            for row in rows
        ]
        self.logger.info("Tuples loaded", count=len(records))
        return records

    async def persist(self, record: TupleRecord, op: PersistOp) -> None:
        pool = self._require_pool()
        row = record.to_row()
        try:
            async with pool.acquire() as conn:
                if op == PersistOp.ADD:
                    await conn.execute(
                        f"""
                        INSERT INTO {self.table_name} (ptype, v0, v1, v2, v3)
                        VALUES ($1, $2, $3, $4, $5)
                        ON CONFLICT (ptype, v0, v1, v2, v3) DO NOTHING
                        """,
                        record.ptype, *row
                    )
                else:
                    await conn.execute(
                        f"""
                        DELETE FROM {self.table_name}
                        WHERE ptype = $1 AND v0 = $2 AND v1 = $3 AND v2 = $4 AND v3 = $5
                        """,
                        record.ptype, *row
                    )
        except _CONNECT_ERRORS as e:
            self.logger.error("Error persisting tuple", ptype=record.ptype, op=op.value, error=str(e))
            raise StoreUnavailableError(f"Cannot persist tuple: {e}")

        self.logger.debug("Tuple persisted", ptype=record.ptype, op=op.value)

    async def health_check(self) -> bool:
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception:
            return False
