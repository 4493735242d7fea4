"""
Persistence package for the RBAC Service.

Tuple stores share one record encoding (see rbac.models) so deployments
can move between them:

- file: CSV policy file.
- postgres: asyncpg-backed table with bounded connection retry.
- memory: process-local list, for tests or an empty development model.
"""

from shared.config import ServiceConfig
from shared.retry import RetryConfig
from .base import TupleStore
from .file import FileTupleStore
from .memory import MemoryTupleStore
from .postgres import PostgresTupleStore


def build_store(config: ServiceConfig) -> TupleStore:
    """Select the tuple store named by the configuration."""
    backend = config.store_backend
    if backend == "postgres":
        return PostgresTupleStore(
            config.rbac_database_url,
            table_name=config.rbac_table_name,
            retry_config=RetryConfig.fixed(
                max_attempts=config.rbac_connect_attempts,
                delay=config.rbac_connect_delay_seconds
            )
        )
    if backend == "file":
        return FileTupleStore(config.policy_path)
    return MemoryTupleStore()


__all__ = [
    "TupleStore",
    "FileTupleStore",
    "MemoryTupleStore",
    "PostgresTupleStore",
    "build_store",
]
