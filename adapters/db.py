# adapters/db.py: document store for audit records (insert and query by index)

import asyncio
import copy
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class DocumentStoreError(Exception):
    """Raised when the backing store rejects or fails a call."""


class DocumentStore(ABC):
    """
    Generic document store.

    Records are flat dicts; `insert` returns the new record id. Queries are
    ordered by the `timestamp` field.
    """

    @abstractmethod
    async def insert(self, table: str, record: Dict[str, Any]) -> str:
        ...

    @abstractmethod
    async def query(
        self,
        table: str,
        field: str,
        value: Any,
        limit: int = 100,
        descending: bool = True,
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def list_recent(self, table: str, limit: int = 100) -> List[Dict[str, Any]]:
        ...


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe process-local store for development and tests."""

    def __init__(self):
        self._lock = threading.RLock()
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._ids = itertools.count(1)

    async def insert(self, table: str, record: Dict[str, Any]) -> str:
        with self._lock:
            record_id = f"{table}_{next(self._ids)}"
            stored = {**copy.deepcopy(record), "id": record_id}
            self._tables.setdefault(table, []).append(stored)
            return record_id

    def _sorted(self, rows: List[Dict[str, Any]], descending: bool) -> List[Dict[str, Any]]:
        # Stable sort keeps insertion order for equal timestamps
        ordered = sorted(rows, key=lambda r: r.get("timestamp") or 0)
        if descending:
            ordered.reverse()
        return ordered

    async def query(
        self,
        table: str,
        field: str,
        value: Any,
        limit: int = 100,
        descending: bool = True,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [r for r in self._tables.get(table, []) if r.get(field) == value]
            return copy.deepcopy(self._sorted(rows, descending)[:limit])

    async def list_recent(self, table: str, limit: int = 100) -> List[Dict[str, Any]]:
        with self._lock:
            rows = list(self._tables.get(table, []))
            return copy.deepcopy(self._sorted(rows, True)[:limit])

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._tables.get(table, []))


class SupabaseDocumentStore(DocumentStore):
    """
    Document store on Supabase (PostgREST) tables.

    The supabase client is synchronous; calls run in the default executor.
    """

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None, client: Any = None):
        if client is None:
            from supabase import create_client

            if not url or not key:
                raise ValueError("Supabase url and key are required")
            client = create_client(url, key)
        self.client = client

    async def _run(self, fn):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except Exception as e:
            raise DocumentStoreError(str(e)) from e

    async def insert(self, table: str, record: Dict[str, Any]) -> str:
        result = await self._run(lambda: self.client.table(table).insert(record).execute())
        if not result.data:
            raise DocumentStoreError(f"Insert into {table} returned no rows")
        return str(result.data[0]["id"])

    async def query(
        self,
        table: str,
        field: str,
        value: Any,
        limit: int = 100,
        descending: bool = True,
    ) -> List[Dict[str, Any]]:
        result = await self._run(
            lambda: self.client.table(table)
            .select("*")
            .eq(field, value)
            .order("timestamp", desc=descending)
            .limit(limit)
            .execute()
        )
        return list(result.data or [])

    async def list_recent(self, table: str, limit: int = 100) -> List[Dict[str, Any]]:
        result = await self._run(
            lambda: self.client.table(table)
            .select("*")
            .order("timestamp", desc=True)
            .limit(limit)
            .execute()
        )
        return list(result.data or [])
