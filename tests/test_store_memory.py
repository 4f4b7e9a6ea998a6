import asyncio

import pytest

from tableside.services.store import (
    DocumentNotFoundError,
    InMemoryDocumentStore,
    StoreQuery,
    VersionConflictError,
)


class TestDocumentOperations:
    """Test point reads and single-document writes"""

    async def test_add_assigns_id_and_version(self, store):
        """Test new documents get a 20-character id at version 1"""
        snapshot = await store.add("orders", {"tableNumber": 5})

        assert len(snapshot.id) == 20
        assert snapshot.version == 1
        assert (await store.get("orders", snapshot.id)).data == {"tableNumber": 5}

    async def test_get_missing_returns_none(self, store):
        assert await store.get("orders", "nope") is None

    async def test_update_merges_top_level_fields(self, store):
        """Test update leaves fields it does not name untouched"""
        snapshot = await store.add("orders", {"a": 1, "b": {"x": 1}})
        updated = await store.update("orders", snapshot.id, {"b": {"y": 2}, "c": 3})

        assert updated.data == {"a": 1, "b": {"y": 2}, "c": 3}
        assert updated.version == 2

    async def test_compare_and_set_rejects_stale_version(self, store):
        snapshot = await store.add("orders", {"n": 0})
        await store.update("orders", snapshot.id, {"n": 1})

        with pytest.raises(VersionConflictError):
            await store.update("orders", snapshot.id, {"n": 2}, expected_version=1)
        assert (await store.get("orders", snapshot.id)).data["n"] == 1

    async def test_update_missing_document(self, store):
        with pytest.raises(DocumentNotFoundError):
            await store.update("orders", "gone", {"n": 1})

    async def test_delete(self, store):
        snapshot = await store.add("orders", {"n": 0})
        await store.delete("orders", snapshot.id)

        assert await store.get("orders", snapshot.id) is None
        with pytest.raises(DocumentNotFoundError):
            await store.delete("orders", snapshot.id)

    async def test_snapshots_are_private_copies(self, store):
        """Test mutating a snapshot never changes the stored document"""
        snapshot = await store.add("orders", {"items": [1]})
        snapshot.data["items"].append(2)

        assert (await store.get("orders", snapshot.id)).data["items"] == [1]


class TestQueries:
    """Test filtering, ordering and limits"""

    async def test_filter_order_and_limit(self, store):
        await store.add("orders", {"tableNumber": 1, "createdAt": "2024-01-01T10:00:00"})
        await store.add("orders", {"tableNumber": 1, "createdAt": "2024-01-01T12:00:00"})
        await store.add("orders", {"tableNumber": 2, "createdAt": "2024-01-01T13:00:00"})

        found = await store.query(StoreQuery(
            "orders",
            filters=(("tableNumber", 1),),
            order_by="createdAt",
            descending=True,
            limit=1,
        ))

        assert len(found) == 1
        assert found[0].data["createdAt"] == "2024-01-01T12:00:00"

    async def test_missing_order_field_sorts_last(self, store):
        await store.add("menu", {"name": "Zeera Rice"})
        await store.add("menu", {})
        await store.add("menu", {"name": "Aloo Paratha"})

        names = [s.data.get("name") for s in await store.query(StoreQuery("menu", order_by="name"))]

        assert names == ["Aloo Paratha", "Zeera Rice", None]

    async def test_equal_keys_newest_insert_first_when_descending(self, store):
        first = await store.add("orders", {"tableNumber": 1, "createdAt": "2024-01-01T10:00:00"})
        second = await store.add("orders", {"tableNumber": 1, "createdAt": "2024-01-01T10:00:00"})

        newest = await store.query(StoreQuery("orders", order_by="createdAt", descending=True))
        oldest = await store.query(StoreQuery("orders", order_by="createdAt"))

        assert [s.id for s in newest] == [second.id, first.id]
        assert [s.id for s in oldest] == [first.id, second.id]

    async def test_collections_are_separate(self, store):
        await store.add("orders", {"n": 1})
        assert await store.query(StoreQuery("menu")) == []


class TestSubscriptions:
    """Test live queries push full result sets in commit order"""

    async def test_initial_push_then_every_change(self, store):
        received = []
        subscription = await store.subscribe(
            StoreQuery("orders", order_by="n"),
            lambda snapshots: received.append([s.data["n"] for s in snapshots]),
        )
        first = await store.add("orders", {"n": 1})
        await store.add("orders", {"n": 2})
        await store.delete("orders", first.id)
        await subscription.drain()

        assert received == [[], [1], [1, 2], [2]]
        subscription.cancel()

    async def test_other_collections_do_not_push(self, store):
        received = []
        subscription = await store.subscribe(StoreQuery("orders"), received.append)
        await store.add("menu", {"name": "Chapati"})
        await subscription.drain()

        assert received == [[]]
        subscription.cancel()

    async def test_cancel_is_idempotent_and_stops_pushes(self, store):
        received = []
        subscription = await store.subscribe(StoreQuery("orders"), received.append)
        await subscription.drain()
        subscription.cancel()
        subscription.cancel()

        await store.add("orders", {"n": 1})
        await asyncio.sleep(0)

        assert len(received) == 1
        assert (await store.health_check())["listeners"] == 0

    async def test_async_callback_may_write_back(self, store):
        """Test a callback can call into the store without deadlocking"""
        seen = []

        async def on_change(snapshots):
            seen.append(len(snapshots))
            if len(snapshots) == 1:
                await store.add("orders", {"n": 2})

        subscription = await store.subscribe(StoreQuery("orders"), on_change)
        await store.add("orders", {"n": 1})
        await subscription.drain()
        await subscription.drain()

        assert seen == [0, 1, 2]
        subscription.cancel()

    async def test_callback_failure_goes_to_error_callback(self, store):
        errors = []

        def on_change(snapshots):
            raise RuntimeError("render failed")

        subscription = await store.subscribe(StoreQuery("orders"), on_change, errors.append)
        await subscription.drain()

        assert [str(e) for e in errors] == ["render failed"]
        subscription.cancel()

    async def test_close_cancels_subscriptions(self):
        store = InMemoryDocumentStore()
        subscription = await store.subscribe(StoreQuery("orders"), lambda s: None)
        await store.close()

        assert subscription.active is False


class TestLatency:
    """Test simulated round-trips"""

    async def test_concurrent_writers_serialise(self):
        store = InMemoryDocumentStore(min_latency=0.001, max_latency=0.005)
        await asyncio.gather(*[store.add("orders", {"n": n}) for n in range(10)])

        assert len(await store.query(StoreQuery("orders"))) == 10
        await store.close()
