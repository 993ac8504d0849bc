"""In-process record store. Used by the test-suite and for local demos."""

import asyncio
import copy
from typing import Any, Dict, List, Optional

from marketplace.core.exceptions import ConflictError, NotFound
from marketplace.db.store import Record, RecordStore, SortSpec
from marketplace.models.base import new_id


def _matches(record: Record, predicate: Record) -> bool:
    for key, condition in predicate.items():
        value = record.get(key)
        if isinstance(condition, dict):
            if "$in" in condition and value not in condition["$in"]:
                return False
            if "$ne" in condition and value == condition["$ne"]:
                return False
        elif value != condition:
            return False
    return True


class InMemoryRecordStore(RecordStore):
    """
    Dict-backed store with the same conditional-update semantics as Mongo.

    Each operation yields to the event loop once before touching data so
    concurrent coroutines interleave the way they would against a real server.
    Check-and-write inside ``update`` happens without yielding.
    """

    def __init__(self):
        self.tables: Dict[str, Dict[str, Record]] = {}

    def _table(self, table: str) -> Dict[str, Record]:
        return self.tables.setdefault(table, {})

    async def find(
        self,
        table: str,
        predicate: Optional[Record] = None,
        sort: Optional[SortSpec] = None
    ) -> List[Record]:
        await asyncio.sleep(0)
        rows = [
            copy.deepcopy(doc)
            for doc in self._table(table).values()
            if _matches(doc, predicate or {})
        ]
        # Apply sort keys last-to-first so the first key dominates
        for field, direction in reversed(sort or []):
            rows.sort(key=lambda doc: doc.get(field), reverse=direction < 0)
        return rows

    async def get(self, table: str, record_id: str) -> Record:
        await asyncio.sleep(0)
        doc = self._table(table).get(record_id)
        if doc is None:
            raise NotFound(f"{table} record {record_id} not found")
        return copy.deepcopy(doc)

    async def insert(self, table: str, record: Record) -> Record:
        await asyncio.sleep(0)
        doc = copy.deepcopy(record)
        doc.setdefault("_id", new_id())
        rows = self._table(table)
        if doc["_id"] in rows:
            raise ConflictError(f"{table} record {doc['_id']} already exists")
        rows[doc["_id"]] = doc
        return copy.deepcopy(doc)

    async def update(
        self,
        table: str,
        record_id: str,
        fields: Record,
        expected: Optional[Record] = None
    ) -> None:
        await asyncio.sleep(0)
        doc = self._table(table).get(record_id)
        if doc is None:
            raise NotFound(f"{table} record {record_id} not found")
        for key, value in (expected or {}).items():
            if doc.get(key) != value:
                raise ConflictError(
                    f"{table} record {record_id}: expected {key}={value!r}, found {doc.get(key)!r}"
                )
        doc.update(copy.deepcopy(fields))

    def count(self, table: str, **predicate: Any) -> int:
        """Synchronous helper for assertions."""
        return sum(1 for doc in self._table(table).values() if _matches(doc, predicate))
