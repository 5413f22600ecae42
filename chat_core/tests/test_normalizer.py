from datetime import datetime, timezone

from chat_core.domain.models import Message, Unrecognized
from chat_core.sync.normalizer import (
    NormalizeContext,
    normalize,
    normalize_record,
    normalize_snapshot,
    parse_date_string,
)


CTX = NormalizeContext(self_id="C1", conversation_id="conv", counterparty_id="U1", self_tag="user")


def test_counterparty_message_from_sender_id():
    msg = normalize({"content": "hola", "senderId": "U1", "timestamp": 1700000000000}, CTX, key="m1")
    assert isinstance(msg, Message)
    assert msg.sender_role == "counterparty"
    assert msg.sender_id == "U1"
    assert msg.content == "hola"
    assert msg.timestamp == 1700000000000
    assert msg.id == "m1"
    assert msg.recipient_id == "C1"


def test_self_message_and_alternate_fields():
    msg = normalize({"text": "hi", "fromId": "C1", "toId": "U1", "timestamp": 5}, CTX, key="k")
    assert msg.sender_role == "self"
    assert msg.content == "hi"
    assert msg.recipient_id == "U1"


def test_content_field_order():
    msg = normalize({"body": "b", "message": "m", "senderId": "U1"}, CTX, key="k", now=1)
    assert msg.content == "m"


def test_content_falls_back_to_free_string():
    msg = normalize({"type": "note", "status": "sent", "note": "free text", "senderId": "U1"}, CTX, key="k", now=1)
    assert msg.content == "free text"


def test_rejects_record_without_content_and_sender():
    result = normalize_record({"type": "meta", "id": "x", "timestamp": 10}, CTX, key="meta")
    assert isinstance(result, Unrecognized)
    assert not result
    assert normalize({"type": "meta"}, CTX) is None
    assert normalize("not a record", CTX) is None


def test_sender_only_record_is_a_message():
    msg = normalize({"senderId": "U1"}, CTX, key="k", now=42)
    assert msg is not None
    assert msg.content == ""
    assert msg.timestamp == 42


def test_content_only_record_is_a_message():
    msg = normalize({"message": "orphan"}, CTX, key="k", now=1)
    assert msg is not None
    assert msg.sender_role == "counterparty"


def test_role_tag_records():
    own = normalize({"message": "mine", "sender": "user", "timestamp": 1}, CTX, key="a")
    other = normalize({"message": "theirs", "sender": "delivery", "timestamp": 2}, CTX, key="b")
    assert own.sender_role == "self"
    assert own.sender_id == "C1"
    assert other.sender_role == "counterparty"
    assert other.sender_id == "U1"


def test_timestamp_seconds_object():
    msg = normalize({"content": "x", "senderId": "U1", "timestamp": {"seconds": 1700000000, "nanoseconds": 5000000}}, CTX, key="k")
    assert msg.timestamp == 1700000000005


def test_timestamp_date_string():
    msg = normalize({"content": "x", "senderId": "U1", "createdAt": "2023-11-14T22:13:20Z"}, CTX, key="k")
    assert msg.timestamp == 1700000000000


def test_timestamp_defaults_to_now():
    msg = normalize({"content": "x", "senderId": "U1"}, CTX, key="k", now=99)
    assert msg.timestamp == 99


def test_clock_time_string_is_today():
    value = parse_date_string("10:30")
    dt = datetime.fromtimestamp(value / 1000)
    assert (dt.hour, dt.minute) == (10, 30)
    assert dt.date() == datetime.now().date()
    assert parse_date_string("garbage") is None
    assert parse_date_string("2023-11-14T22:13:20+00:00") == int(
        datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc).timestamp() * 1000
    )


def test_synthesized_ids_only_without_any_key():
    a = normalize({"content": "x", "senderId": "U1"}, CTX, key=None, now=1)
    b = normalize({"content": "x", "senderId": "U1"}, CTX, key=None, now=1)
    assert a.is_volatile and b.is_volatile
    assert a.id != b.id
    stored = normalize({"content": "x", "senderId": "U1"}, CTX, key="-Nabc", now=1)
    assert not stored.is_volatile
    assert stored.id == "-Nabc"


def test_digit_keys_give_stable_ids():
    ctx = NormalizeContext(self_id="C1", conversation_id="conv", counterparty_id="U1", source_path="chats/C1/U1")
    snapshot = {
        "0": {"content": "a", "senderId": "U1", "timestamp": 1},
        "1": {"content": "b", "senderId": "C1", "timestamp": 2},
    }
    first = normalize_snapshot(snapshot, ctx)
    again = normalize_snapshot(snapshot, ctx, now=999)
    assert [m.id for m in first] == ["chats/C1/U1#0", "chats/C1/U1#1"]
    assert [m.id for m in again] == [m.id for m in first]
    assert not any(m.is_volatile for m in first)
    assert first[0].source_key == "0"
    with_id = normalize({"id": "m7", "content": "c", "senderId": "U1"}, ctx, key="2", now=1)
    assert with_id.id == "m7"


def test_list_snapshot_uses_index_keys():
    ctx = NormalizeContext(self_id="C1", conversation_id="conv", source_path="p")
    messages = normalize_snapshot([{"content": "a", "senderId": "U1"}, None], ctx, now=5)
    assert [m.id for m in messages] == ["p#0"]


def test_read_forces_read_status():
    msg = normalize({"content": "x", "senderId": "U1", "read": True, "status": "sent"}, CTX, key="k", now=1)
    assert msg.read is True
    assert msg.status == "read"


def test_snapshot_skips_unrelated_metadata():
    snapshot = {
        "m1": {"content": "a", "senderId": "U1", "timestamp": 2},
        "meta": {"type": "thread"},
        "count": 3,
        "m2": {"content": "b", "senderId": "C1", "timestamp": 1},
    }
    messages = normalize_snapshot(snapshot, CTX)
    assert sorted(m.id for m in messages) == ["m1", "m2"]
    assert normalize_snapshot(None, CTX) == []
