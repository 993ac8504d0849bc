"""
Record store contract.

The marketplace core never talks to a database driver directly. It reads and
writes plain documents through this adapter:

- find(table, predicate, sort) -> list of records
- get(table, id) -> record, raises NotFound
- insert(table, record) -> record (id assigned if absent)
- update(table, id, fields, expected) -> None, raises ConflictError when the
  ``expected`` field values do not match the stored record

``expected`` is what makes optimistic concurrency possible: callers pass the
status/version they read and the write only lands if nobody changed them.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

# Tables
USERS = "users"
INVOICES = "invoices"
DEALS = "deals"
MESSAGES = "messages"

ASCENDING = 1
DESCENDING = -1

Record = Dict[str, Any]
SortSpec = List[Tuple[str, int]]


class RecordStore(ABC):
    """Generic CRUD + filtered read over the marketplace tables."""

    @abstractmethod
    async def find(
        self,
        table: str,
        predicate: Optional[Record] = None,
        sort: Optional[SortSpec] = None
    ) -> List[Record]:
        """Return every record matching ``predicate`` (equality, ``$in``, ``$ne``)."""

    @abstractmethod
    async def get(self, table: str, record_id: str) -> Record:
        """Return one record or raise NotFound."""

    @abstractmethod
    async def insert(self, table: str, record: Record) -> Record:
        """Insert a record, assigning ``_id`` if missing."""

    @abstractmethod
    async def update(
        self,
        table: str,
        record_id: str,
        fields: Record,
        expected: Optional[Record] = None
    ) -> None:
        """Set ``fields`` on a record, conditional on ``expected``."""
