import asyncio

from chat_core.infrastructure.storage.memory_store import InMemoryStore, join_path, split_path


def test_path_helpers():
    assert split_path("/chats//C1/U1/") == ["chats", "C1", "U1"]
    assert split_path("") == []
    assert join_path("chats/", "/C1", "", "U1") == "chats/C1/U1"


def test_read_missing_returns_none():
    store = InMemoryStore({"chats": {"C1": {}}})
    assert asyncio.run(store.read("chats/C1/U1")) is None
    assert asyncio.run(store.read("chats")) == {"C1": {}}


def test_subscribers_see_writes_below_and_above_their_path():
    store = InMemoryStore()
    deep, shallow, other = [], [], []

    async def main():
        await store.subscribe("chats/C1/U1", deep.append)
        await store.subscribe("chats", shallow.append)
        await store.subscribe("requests", other.append)
        key = await store.append("chats/C1/U1", {"content": "hola"})
        await store.update(f"chats/C1/U1/{key}", {"read": True})
        return key

    key = asyncio.run(main())
    assert deep[0] is None
    assert deep[-1] == {key: {"content": "hola", "read": True}}
    assert shallow[-1]["C1"]["U1"][key]["read"] is True
    assert other == [None]


def test_generated_keys_are_unique_and_ordered():
    store = InMemoryStore()

    async def main():
        return [await store.append("m", {"n": i}) for i in range(5)]

    keys = asyncio.run(main())
    assert len(set(keys)) == 5
    assert all(k.startswith("-") for k in keys)


def test_unsubscribe_stops_delivery():
    store = InMemoryStore()
    seen = []

    async def main():
        handle = await store.subscribe("chats", seen.append)
        store.unsubscribe(handle)
        store.unsubscribe(handle)
        store.set("chats/C1", {"x": 1})

    asyncio.run(main())
    assert seen == [None]
    assert store.subscription_count == 0


def test_set_none_deletes_and_snapshot_is_a_copy():
    store = InMemoryStore({"a": {"b": 1, "c": 2}})
    store.set("a/b", None)
    snap = store.snapshot()
    snap["a"]["c"] = 99
    assert store.snapshot() == {"a": {"c": 2}}
