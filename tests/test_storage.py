"""Tests for the ``JSONDocumentStore`` persistence layer."""

import asyncio
from pathlib import Path

import pytest

from moodboard.adapters.base import SERVER_TIMESTAMP, ArrayRemove, ArrayUnion, Increment
from moodboard.core.errors import ConflictError, NotFoundError
from moodboard.core.storage import JSONDocumentStore


def test_set_get_and_missing() -> None:
    """Documents can be saved and retrieved; missing lookups yield ``None``."""
    store = JSONDocumentStore()

    async def scenario():
        await store.set("users", "u1", {"username": "Alice"})
        return await store.get("users", "u1"), await store.get("users", "nope")

    found, missing = asyncio.run(scenario())
    assert found == {"id": "u1", "username": "Alice"}
    assert missing is None


def test_field_operators() -> None:
    store = JSONDocumentStore()

    async def scenario():
        doc_id = await store.add("vibes", {"likedBy": ["b"], "likes": 1, "timestamp": SERVER_TIMESTAMP})
        await store.update(
            "vibes",
            doc_id,
            {"likedBy": ArrayUnion("b", "c"), "likes": Increment(2)},
        )
        await store.update("vibes", doc_id, {"likedBy": ArrayRemove("b")})
        return await store.get("vibes", doc_id)

    doc = asyncio.run(scenario())
    assert doc["likedBy"] == ["c"]
    assert doc["likes"] == 3
    assert isinstance(doc["timestamp"], int)


def test_update_missing_document_raises() -> None:
    store = JSONDocumentStore()
    with pytest.raises(NotFoundError):
        asyncio.run(store.update("users", "ghost", {"username": "x"}))


def test_query_filters_orders_and_limits() -> None:
    store = JSONDocumentStore()

    async def scenario():
        await store.set("vibes", "a", {"userId": "u1", "timestamp": 1})
        await store.set("vibes", "b", {"userId": "u2", "timestamp": 3})
        await store.set("vibes", "c", {"userId": "u1", "timestamp": 2})
        await store.set("vibes", "d", {"userId": "u1"})
        mine = await store.query("vibes", where=[("userId", "u1")], order_by="timestamp", descending=True)
        newest = await store.query("vibes", order_by="timestamp", descending=True, limit=1)
        return mine, newest

    mine, newest = asyncio.run(scenario())
    # documents without the ordering field are left out of ordered queries
    assert [d["id"] for d in mine] == ["c", "a"]
    assert [d["id"] for d in newest] == ["b"]


def test_prefix_query() -> None:
    store = JSONDocumentStore()

    async def scenario():
        for uid, name in [("1", "CalmRiver1"), ("2", "CalmStar9"), ("3", "HappyMoon2")]:
            await store.set("users", uid, {"username": name})
        return await store.query("users", order_by="username", start_at="Calm", end_at="Calm\uf8ff")

    rows = asyncio.run(scenario())
    assert [r["username"] for r in rows] == ["CalmRiver1", "CalmStar9"]


def test_transaction_applies_updates() -> None:
    store = JSONDocumentStore()

    async def scenario():
        await store.set("vibes", "v", {"likes": 0, "likedBy": []})
        return await store.run_transaction(
            "vibes", "v", lambda d: {"likes": d["likes"] + 1, "likedBy": d["likedBy"] + ["a"]}
        )

    doc = asyncio.run(scenario())
    assert doc["likes"] == 1 and doc["likedBy"] == ["a"]


def test_transaction_retries_then_raises_conflict() -> None:
    store = JSONDocumentStore(max_attempts=3)
    calls = []

    def meddling(data):
        calls.append(data)
        # simulate a concurrent writer touching the document mid-transaction
        store._bump("vibes", "v")
        return {"likes": 1}

    async def scenario():
        await store.set("vibes", "v", {"likes": 0})
        await store.run_transaction("vibes", "v", meddling)

    with pytest.raises(ConflictError):
        asyncio.run(scenario())
    assert len(calls) == 3
    assert asyncio.run(store.get("vibes", "v"))["likes"] == 0


def test_transaction_survives_one_collision() -> None:
    store = JSONDocumentStore()
    attempts = []

    def flaky(data):
        attempts.append(data["likes"])
        if len(attempts) == 1:
            store._bump("vibes", "v")
        return {"likes": data["likes"] + 1}

    async def scenario():
        await store.set("vibes", "v", {"likes": 4})
        return await store.run_transaction("vibes", "v", flaky)

    assert asyncio.run(scenario())["likes"] == 5
    assert attempts == [4, 4]


def test_transaction_on_missing_document() -> None:
    store = JSONDocumentStore()
    with pytest.raises(NotFoundError):
        asyncio.run(store.run_transaction("vibes", "gone", lambda d: {}))


def test_subscribe_pushes_snapshots_until_unsubscribed() -> None:
    store = JSONDocumentStore()
    seen = []
    unsubscribe = store.subscribe(
        "vibes", lambda rows: seen.append([r["id"] for r in rows]), order_by="timestamp", descending=True
    )

    async def scenario():
        await store.set("vibes", "a", {"timestamp": 1})
        await store.set("vibes", "b", {"timestamp": 2})
        unsubscribe()
        await store.set("vibes", "c", {"timestamp": 3})

    asyncio.run(scenario())
    assert seen == [[], ["a"], ["b", "a"]]
    assert store.listener_count("vibes") == 0


def test_delete_where_is_batched() -> None:
    store = JSONDocumentStore()
    pushes = []
    store.subscribe("vibes", lambda rows: pushes.append(len(rows)))

    async def scenario():
        await store.set("vibes", "a", {"userId": "u1"})
        await store.set("vibes", "b", {"userId": "u1"})
        await store.set("vibes", "c", {"userId": "u2"})
        deleted = await store.delete_where("vibes", "userId", "u1")
        return deleted, await store.query("vibes")

    deleted, left = asyncio.run(scenario())
    assert deleted == 2
    assert [d["id"] for d in left] == ["c"]
    # initial push, three writes, one batch delete
    assert pushes == [0, 1, 2, 3, 1]


def test_persistence_across_instances(tmp_path: Path) -> None:
    """Data survives across multiple storage instances."""
    path = tmp_path / "data.json"
    store = JSONDocumentStore(path)
    asyncio.run(store.set("users", "u1", {"username": "Eve", "badges": ["special_founding"]}))

    assert path.exists()

    reloaded = JSONDocumentStore(path)
    assert asyncio.run(reloaded.get("users", "u1"))["username"] == "Eve"
