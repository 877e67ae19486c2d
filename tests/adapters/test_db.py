"""
Tests for the document store adapters.
"""

from unittest.mock import MagicMock

import pytest

from adapters.db import DocumentStoreError, InMemoryDocumentStore, SupabaseDocumentStore


class TestInMemoryDocumentStore:
    """Test the process-local store."""

    @pytest.mark.anyio
    async def test_insert_returns_distinct_ids(self, document_store):
        first = await document_store.insert("events", {"timestamp": 1})
        second = await document_store.insert("events", {"timestamp": 2})
        assert first != second
        assert document_store.count("events") == 2

    @pytest.mark.anyio
    async def test_query_filters_and_orders_newest_first(self, document_store):
        await document_store.insert("events", {"user": "a", "timestamp": 1})
        await document_store.insert("events", {"user": "b", "timestamp": 2})
        await document_store.insert("events", {"user": "a", "timestamp": 3})

        rows = await document_store.query("events", "user", "a")
        assert [r["timestamp"] for r in rows] == [3, 1]

        oldest_first = await document_store.query("events", "user", "a", descending=False)
        assert [r["timestamp"] for r in oldest_first] == [1, 3]

    @pytest.mark.anyio
    async def test_equal_timestamps_keep_insertion_order_reversed(self, document_store):
        first = await document_store.insert("events", {"timestamp": 5})
        second = await document_store.insert("events", {"timestamp": 5})
        rows = await document_store.list_recent("events")
        assert [r["id"] for r in rows] == [second, first]

    @pytest.mark.anyio
    async def test_limit(self, document_store):
        for i in range(5):
            await document_store.insert("events", {"timestamp": i})
        rows = await document_store.list_recent("events", limit=2)
        assert [r["timestamp"] for r in rows] == [4, 3]

    @pytest.mark.anyio
    async def test_records_are_copied(self):
        store = InMemoryDocumentStore()
        record = {"timestamp": 1, "tags": ["x"]}
        await store.insert("events", record)
        record["tags"].append("y")

        rows = await store.list_recent("events")
        rows[0]["tags"].append("z")
        assert (await store.list_recent("events"))[0]["tags"] == ["x"]

    @pytest.mark.anyio
    async def test_unknown_table_is_empty(self, document_store):
        assert await document_store.list_recent("nothing") == []


class TestSupabaseDocumentStore:
    """Test the Supabase store against a mocked client."""

    @pytest.mark.anyio
    async def test_insert_returns_row_id(self):
        client = MagicMock()
        client.table.return_value.insert.return_value.execute.return_value = MagicMock(data=[{"id": 42}])
        store = SupabaseDocumentStore(client=client)

        assert await store.insert("role_audit_log", {"timestamp": 1}) == "42"
        client.table.assert_called_with("role_audit_log")

    @pytest.mark.anyio
    async def test_insert_without_rows_fails(self):
        client = MagicMock()
        client.table.return_value.insert.return_value.execute.return_value = MagicMock(data=[])
        with pytest.raises(DocumentStoreError):
            await SupabaseDocumentStore(client=client).insert("role_audit_log", {})

    @pytest.mark.anyio
    async def test_client_errors_are_wrapped(self):
        client = MagicMock()
        client.table.side_effect = RuntimeError("connection reset")
        with pytest.raises(DocumentStoreError):
            await SupabaseDocumentStore(client=client).list_recent("role_audit_log")

    @pytest.mark.anyio
    async def test_query_builds_filter(self):
        client = MagicMock()
        chain = client.table.return_value.select.return_value.eq.return_value.order.return_value.limit.return_value
        chain.execute.return_value = MagicMock(data=[{"id": 1, "target_user_id": "u1"}])
        store = SupabaseDocumentStore(client=client)

        rows = await store.query("role_audit_log", "target_user_id", "u1", limit=5)
        assert rows == [{"id": 1, "target_user_id": "u1"}]
        client.table.return_value.select.return_value.eq.assert_called_with("target_user_id", "u1")
        client.table.return_value.select.return_value.eq.return_value.order.assert_called_with("timestamp", desc=True)

    def test_requires_credentials_without_client(self):
        with pytest.raises(ValueError):
            SupabaseDocumentStore(url=None, key=None)
