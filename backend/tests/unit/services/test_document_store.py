"""
Unit Tests for the SQL document store
Tests for: point reads/writes, listing, merge, subscriptions
"""
import pytest
from faker import Faker
from unittest.mock import MagicMock

from portal.core.exceptions import DocumentStoreError

fake = Faker()


class TestReadWrite:
    """Test get/set/add/list"""

    @pytest.mark.asyncio
    async def test_set_then_get(self, store):
        """Test a written document reads back"""
        fields = {"title": fake.sentence(), "views": 3, "tags": ["a", "b"]}

        await store.set("news", "n1", fields)

        assert await store.get("news", "n1") == fields

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        """Test reading an absent document"""
        assert await store.get("news", "missing") is None

    @pytest.mark.asyncio
    async def test_set_is_full_overwrite(self, store):
        """Test set() replaces every field"""
        await store.set("courses", "bca", {"name": "BCA", "seats": 60})

        await store.set("courses", "bca", {"name": "BCA (Hons)"})

        assert await store.get("courses", "bca") == {"name": "BCA (Hons)"}

    @pytest.mark.asyncio
    async def test_merge_keeps_other_fields(self, store):
        """Test merge() is a shallow update"""
        await store.set("settings", "security", {"isActive": False, "config": {"maxRefreshes": 5}})

        merged = await store.merge("settings", "security", {"migrationMode": True})

        assert merged == {"isActive": False, "config": {"maxRefreshes": 5}, "migrationMode": True}
        assert await store.get("settings", "security") == merged

    @pytest.mark.asyncio
    async def test_add_generates_id(self, store):
        """Test add() returns the new document id"""
        doc_id = await store.add("inquiries", {"email": fake.email()})

        assert doc_id
        assert await store.get("inquiries", doc_id) is not None

    @pytest.mark.asyncio
    async def test_list_in_insertion_order(self, store):
        """Test list() returns (id, fields) pairs oldest first"""
        for i in range(3):
            await store.set("events", f"e{i}", {"order": i})
        await store.set("news", "other", {})

        documents = await store.list("events")

        assert documents == [("e0", {"order": 0}), ("e1", {"order": 1}), ("e2", {"order": 2})]

    @pytest.mark.asyncio
    async def test_collections_lists_names(self, store):
        """Test collections() returns every non-empty collection"""
        await store.set("news", "n1", {})
        await store.set("alumni", "a1", {})

        assert await store.collections() == ["alumni", "news"]

    @pytest.mark.asyncio
    async def test_empty_id_rejected(self, store):
        """Test a document id is required"""
        with pytest.raises(DocumentStoreError):
            await store.set("news", "", {"title": "x"})

    @pytest.mark.asyncio
    async def test_read_failure_is_wrapped(self, store):
        """Test backend errors surface as DocumentStoreError"""
        broken_factory = MagicMock(side_effect=RuntimeError("database is locked"))
        store._session_factory = broken_factory

        with pytest.raises(DocumentStoreError) as exc_info:
            await store.list("news")

        assert exc_info.value.details["collection"] == "news"


class TestSubscriptions:
    """Test push subscriptions to a single document"""

    @pytest.mark.asyncio
    async def test_current_value_delivered_immediately(self, store):
        """Test subscribe() pushes the current value first"""
        await store.set("settings", "security", {"isActive": True})
        seen = []

        await store.subscribe("settings", "security", seen.append)

        assert seen == [{"isActive": True}]

    @pytest.mark.asyncio
    async def test_absent_document_delivers_none(self, store):
        """Test a missing document is reported as None"""
        seen = []

        await store.subscribe("settings", "security", seen.append)

        assert seen == [None]

    @pytest.mark.asyncio
    async def test_writes_delivered_in_order(self, store):
        """Test each write reaches subscribers in write order"""
        seen = []
        await store.subscribe("settings", "security", seen.append)

        for i in range(3):
            await store.set("settings", "security", {"version": i})

        assert seen[1:] == [{"version": 0}, {"version": 1}, {"version": 2}]

    @pytest.mark.asyncio
    async def test_other_documents_not_delivered(self, store):
        """Test subscriptions are per document"""
        seen = []
        await store.subscribe("settings", "security", seen.append)

        await store.set("settings", "general", {"siteName": "PVM"})

        assert seen == [None]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, store):
        """Test the returned handle removes the subscription"""
        seen = []
        unsubscribe = await store.subscribe("settings", "security", seen.append)

        unsubscribe()
        await store.set("settings", "security", {"isActive": True})

        assert seen == [None]
        assert store.subscriber_count("settings", "security") == 0

    @pytest.mark.asyncio
    async def test_broken_subscriber_does_not_fail_write(self, store):
        """Test a raising callback is logged and the write still lands"""
        def broken(_value):
            raise RuntimeError("listener crashed")

        await store.subscribe("settings", "security", broken)

        await store.set("settings", "security", {"isActive": True})

        assert await store.get("settings", "security") == {"isActive": True}

    @pytest.mark.asyncio
    async def test_async_subscriber_awaited(self, store):
        """Test coroutine callbacks are awaited"""
        seen = []

        async def callback(value):
            seen.append(value)

        await store.subscribe("settings", "security", callback)
        await store.set("settings", "security", {"isActive": False})

        assert seen == [None, {"isActive": False}]
