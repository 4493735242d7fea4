"""
Tuple store interface for the RBAC Service.
"""

from abc import ABC, abstractmethod
from typing import List

from ..rbac.models import PersistOp, TupleRecord


class TupleStore(ABC):
    """Persists and retrieves policy, role-assignment and subdomain tuples.

    Stores own no business logic. Failures surface as
    StoreUnavailableError.
    """

    name = "store"

    async def start(self):
        """Open connections."""

    async def stop(self):
        """Close connections."""

    @abstractmethod
    async def load_all(self) -> List[TupleRecord]:
        """Every persisted tuple, in insertion order."""

    @abstractmethod
    async def persist(self, record: TupleRecord, op: PersistOp) -> None:
        """Apply one incremental add or remove."""

    async def health_check(self) -> bool:
        return True
