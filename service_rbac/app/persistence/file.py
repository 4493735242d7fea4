"""
CSV file tuple store for the RBAC Service.

One tuple per line, type first::

    p, admin, root, data1, write
    g, alice, admin, root
    g2, team-a, root

Blank lines and lines starting with ``#`` are ignored.
"""

import asyncio
import csv
import os
import tempfile
from typing import List

from shared.logging import get_logger
from shared.errors import StoreUnavailableError, ValidationError
from .base import TupleStore
from ..rbac.models import PersistOp, TupleRecord


class FileTupleStore(TupleStore):
    """Tuple store backed by a CSV policy file."""

    name = "file"

    def __init__(self, path: str):
        self.path = path
        self.logger = get_logger("rbac.persistence.file")

    async def start(self):
        self.logger.info("File tuple store started", path=self.path)

    async def load_all(self) -> List[TupleRecord]:
        try:
            records = await asyncio.to_thread(self._read)
        except OSError as e:
            self.logger.error("Failed to read policy file", path=self.path, error=str(e))
            raise StoreUnavailableError(f"Cannot read policy file: {e}", {"path": self.path})

        self.logger.info("Tuples loaded", path=self.path, count=len(records))
        return records

    async def persist(self, record: TupleRecord, op: PersistOp) -> None:
        try:
            await asyncio.to_thread(self._apply, record, op)
        except (OSError, ValidationError) as e:
            self.logger.error("Failed to write policy file", path=self.path, error=str(e))
            raise StoreUnavailableError(f"Cannot write policy file: {e}", {"path": self.path})

    async def health_check(self) -> bool:
        if os.path.exists(self.path):
            return os.access(self.path, os.R_OK | os.W_OK)
        directory = os.path.dirname(os.path.abspath(self.path))
        return os.access(directory, os.W_OK)

    def _read(self) -> List[TupleRecord]:
        # A missing file is an empty model; it is created on first write
        if not os.path.exists(self.path):
            return []

        records: List[TupleRecord] = []
        with open(self.path, newline="", encoding="utf-8") as handle:
            for line_number, row in enumerate(csv.reader(handle, skipinitialspace=True), start=1):
                if not row or not row[0].strip() or row[0].lstrip().startswith("#"):
                    continue
                try:
                    records.append(TupleRecord.from_row(row[0], row[1:]))
                except ValidationError as e:
                    raise ValidationError(
                        f"{self.path}:{line_number}: {e.message}",
                        {**e.details, "line": line_number}
                    )
        return records

    def _apply(self, record: TupleRecord, op: PersistOp) -> None:
        records = self._read()
        if op == PersistOp.ADD:
            if record in records:
                return
            records.append(record)
        else:
            if record not in records:
                return
            records = [r for r in records if r != record]
        self._write(records)

    def _write(self, records: List[TupleRecord]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".policy-", suffix=".csv")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                for record in records:
                    handle.write(", ".join((record.ptype,) + record.values) + "\n")
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
