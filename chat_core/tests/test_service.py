import asyncio

import pytest

from chat_core.api.service import ChatService, conversation_to_dict, message_to_dict
from chat_core.config.settings import ChatSettings
from chat_core.domain.exceptions import ValidationError, WriteFailure
from chat_core.infrastructure.storage.memory_store import InMemoryStore
from chat_core.infrastructure.storage.registry import InMemoryRegistry
from chat_core.sync.events import OPEN_CONVERSATION, ChatEventBus


HOLA = {"content": "hola", "senderId": "U1", "timestamp": 1700000000000}

ROOT = {
    "userChats": {"C1": {"U1": {"m1": dict(HOLA)}}},
    "chats": {"U1": {"C1": {"m1": dict(HOLA)}}},
    "messages": {"REQ1": {"a": {"message": "quote?", "sender": "delivery", "timestamp": 5}}},
}


def _service(store=None, bus=None, registry=None):
    return ChatService(
        store=store if store is not None else InMemoryStore(ROOT),
        registry=registry or InMemoryRegistry(),
        self_id="C1",
        self_tag="company",
        self_name="Acme",
        config=ChatSettings(explorer_enabled=True, max_outbound_messages=3),
        bus=bus,
    )


def test_same_message_on_two_paths_is_shown_once():
    service = _service()
    conv = asyncio.run(service.open_conversation("U1"))

    assert conv.id == "direct_C1_U1"
    assert [m.id for m in service.messages] == ["m1"]
    assert service.messages[0].sender_role == "counterparty"
    assert {"userChats/C1/U1", "chats/U1/C1"} <= conv.discovered_paths
    assert conv.last_message == "hola"
    assert conv.unread_count == 1
    assert service.listeners.state == "active"


def test_send_echo_and_listener_copy_collapse():
    store = InMemoryStore(ROOT)
    service = _service(store)

    async def main():
        conv = await service.open_conversation("U1")
        return await service.send_message(conv.id, "gracias")

    echo = asyncio.run(main())

    assert echo.source_path == "userChats/C1/U1"
    assert [m.id for m in service.messages] == ["m1", echo.id]
    assert service.draft == ""
    written = store.snapshot()["userChats"]["C1"]["U1"][echo.id]
    assert written["sender"] == "company"
    assert written["senderName"] == "Acme"


def test_failed_send_keeps_draft():
    class ReadOnlyStore(InMemoryStore):
        async def append(self, path, record):
            raise ConnectionError("read only")

    service = _service(ReadOnlyStore(ROOT))

    async def main():
        conv = await service.open_conversation("U1")
        with pytest.raises(WriteFailure):
            await service.send_message(conv.id, "gracias")

    asyncio.run(main())
    assert service.draft == "gracias"
    assert [m.id for m in service.messages] == ["m1"]


def test_send_requires_open_conversation():
    service = _service()
    with pytest.raises(ValidationError):
        asyncio.run(service.send_message("direct_C1_U1", "hola"))
    with pytest.raises(ValidationError):
        asyncio.run(service.open_conversation(""))


def test_switch_releases_previous_listeners():
    store = InMemoryStore(ROOT)
    service = _service(store)

    async def main():
        await service.open_conversation("U1")
        first = store.subscription_count
        await service.open_conversation("U2")
        return first

    first = asyncio.run(main())
    assert first > 0
    assert store.subscription_count == len(service.listeners.active_paths)
    assert all("U2" in p for p in service.listeners.active_paths)
    assert service.messages == []
    assert service.current_conversation.counterparty_id == "U2"


def test_stale_exploration_is_discarded():
    gate = None
    root_reads = []

    class SlowRootStore(InMemoryStore):
        async def read(self, path):
            if path == "":
                root_reads.append(path)
                if len(root_reads) == 1:
                    await gate.wait()
            return await super().read(path)

    store = SlowRootStore(ROOT)
    service = _service(store)

    async def main():
        nonlocal gate
        gate = asyncio.Event()
        first = asyncio.create_task(service.open_conversation("U1"))
        await asyncio.sleep(0)
        await service.open_conversation("U2")
        gate.set()
        await first

    asyncio.run(main())
    assert service.current_conversation.counterparty_id == "U2"
    assert all("U2" in p for p in service.listeners.active_paths)
    assert store.subscription_count == len(service.listeners.active_paths)
    assert service.messages == []


def test_mark_conversation_read_writes_back():
    store = InMemoryStore(ROOT)
    service = _service(store)

    async def main():
        await service.open_conversation("U1")
        return await service.mark_conversation_read()

    assert asyncio.run(main()) == 1
    assert service.messages[0].read is True
    assert service.messages[0].status == "read"
    assert service.current_conversation.unread_count == 0
    snapshot = store.snapshot()
    copies = [snapshot["userChats"]["C1"]["U1"]["m1"], snapshot["chats"]["U1"]["C1"]["m1"]]
    assert any(c.get("read") is True and c.get("status") == "read" for c in copies)
    assert asyncio.run(service.mark_conversation_read()) == 0


def test_event_bus_opens_conversation_while_attached():
    bus = ChatEventBus()
    service = _service(bus=bus)

    async def main():
        service.attach()
        tasks = bus.emit(OPEN_CONVERSATION, {"counterparty_id": "U1"})
        await asyncio.gather(*tasks)
        service.close()
        return bus.emit(OPEN_CONVERSATION, {"counterparty_id": "U2"})

    leftover = asyncio.run(main())
    assert leftover == []
    assert not bus.has_handlers(OPEN_CONVERSATION)
    assert service.current_conversation is None
    assert service.listeners.active_paths == []


def test_refresh_conversations_feeds_the_path_index():
    registry = InMemoryRegistry()
    registry.add("requests", "REQ1", {"title": "Move piano", "companyId": "C1", "deliveryId": "U9"})
    store = InMemoryStore(ROOT)
    service = _service(store, registry=registry)

    async def main():
        conversations = await service.refresh_conversations()
        conv = await service.open_conversation("U9", "REQ1")
        return conversations, conv

    conversations, conv = asyncio.run(main())
    assert {c.id for c in conversations} == {"direct_C1_U1", "REQ1"}
    assert conv.subject == "Move piano"
    assert "messages/REQ1" in service.listeners.active_paths
    assert [m.content for m in service.messages] == ["quote?"]


def test_dict_views():
    service = _service()
    conv = asyncio.run(service.open_conversation("U1"))
    data = conversation_to_dict(conv)
    assert data["id"] == "direct_C1_U1"
    assert data["discovered_paths"] == sorted(conv.discovered_paths)
    assert message_to_dict(service.messages[0])["content"] == "hola"


def test_array_keyed_messages_survive_later_pushes():
    store = InMemoryStore({"chats": {"C1": {"U1": {
        "0": {"content": "a", "senderId": "U1", "timestamp": 1},
        "1": {"content": "b", "senderId": "U1", "timestamp": 2},
    }}}})
    service = _service(store)

    async def main():
        conv = await service.open_conversation("U1")
        assert [m.content for m in service.messages] == ["a", "b"]
        await service.send_message(conv.id, "reply")
        return await service.mark_conversation_read()

    assert asyncio.run(main()) == 2
    assert [m.content for m in service.messages] == ["a", "b", "reply"]
    stored = store.snapshot()["chats"]["C1"]["U1"]
    assert stored["0"]["read"] is True
    assert stored["1"]["status"] == "read"
