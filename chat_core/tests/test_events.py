from chat_core.sync.events import OPEN_CONVERSATION, ChatEventBus


def test_emit_without_handlers_is_a_noop():
    bus = ChatEventBus()
    assert bus.emit(OPEN_CONVERSATION, "U1") == []
    assert not bus.has_handlers(OPEN_CONVERSATION)


def test_register_and_unregister():
    bus = ChatEventBus()
    calls = []
    unregister = bus.register(OPEN_CONVERSATION, lambda payload: calls.append(payload) or "opened")

    assert bus.emit(OPEN_CONVERSATION, "U1") == ["opened"]
    unregister()
    unregister()
    assert bus.emit(OPEN_CONVERSATION, "U2") == []
    assert calls == ["U1"]


def test_handlers_are_scoped_per_event():
    bus = ChatEventBus()
    bus.register("other", lambda payload: payload)
    assert bus.emit(OPEN_CONVERSATION) == []
    assert bus.emit("other", 1) == [1]
