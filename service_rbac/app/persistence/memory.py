"""
In-memory tuple store, used for tests and when no backend is configured.
"""

from typing import Iterable, List

from shared.logging import get_logger
from .base import TupleStore
from ..rbac.models import PersistOp, TupleRecord


class MemoryTupleStore(TupleStore):
    """Keeps tuples in a list for the lifetime of the process."""

    name = "memory"

    def __init__(self, records: Iterable[TupleRecord] = ()):
        self.logger = get_logger("rbac.persistence.memory")
        self.records: List[TupleRecord] = list(records)

    async def load_all(self) -> List[TupleRecord]:
        return list(self.records)

    async def persist(self, record: TupleRecord, op: PersistOp) -> None:
        if op == PersistOp.ADD:
            if record not in self.records:
                self.records.append(record)
        else:
            self.records = [r for r in self.records if r != record]
        self.logger.debug("Tuple persisted", ptype=record.ptype, op=op.value)
