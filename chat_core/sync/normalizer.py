"""消息归一化：任意结构的原始记录 -> Message。

每类字段（内容、发送方、接收方、时间戳）各对应一组有序的纯取值函数，
第一个返回值的函数胜出。既无内容又无任何发送方信号的记录不是消息，
返回 ``Unrecognized``。
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from uuid import uuid4

from chat_core.domain.models import (
    Message,
    STATUS_RANK,
    Unrecognized,
    VOLATILE_ID_PREFIX,
)


Accessor = Callable[[Dict[str, Any]], Optional[Any]]

CONTENT_FIELDS: Sequence[str] = ("content", "message", "text", "body", "data")
SENDER_FIELDS: Sequence[str] = ("senderId", "fromId", "userId", "authorId")
RECIPIENT_FIELDS: Sequence[str] = ("recipientId", "toId", "receiverId", "targetId")
SENDER_NAME_FIELDS: Sequence[str] = ("senderName", "authorName", "fromName")
TIMESTAMP_FIELDS: Sequence[str] = ("timestamp", "createdAt", "sentAt", "time", "date")
ROLE_TAG_FIELD = "sender"

# 兜底取内容时跳过的 key
CONTENT_DENYLIST = frozenset({"id", "uid", "key", "ref", "path", "type", "status"})
_IDENTITY_FIELDS = frozenset(
    [*SENDER_FIELDS, *RECIPIENT_FIELDS, *SENDER_NAME_FIELDS, *TIMESTAMP_FIELDS, ROLE_TAG_FIELD, "read"]
)

NormalizeResult = Union[Message, Unrecognized]


@dataclass(frozen=True)
class NormalizeContext:
    self_id: str
    conversation_id: str
    counterparty_id: Optional[str] = None
    self_tag: Optional[str] = None
    source_path: Optional[str] = None


def now_millis() -> int:
    return int(time.time() * 1000)


def volatile_id(now: Optional[int] = None) -> str:
    return f"{VOLATILE_ID_PREFIX}{now if now is not None else now_millis()}-{uuid4().hex[:8]}"


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _ident(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    return _text(value)


def field_text(name: str) -> Accessor:
    return lambda raw: _text(raw.get(name))


def field_ident(name: str) -> Accessor:
    return lambda raw: _ident(raw.get(name))


def first_free_string(raw: Dict[str, Any]) -> Optional[str]:
    for key, value in raw.items():
        if key in CONTENT_DENYLIST or key in _IDENTITY_FIELDS:
            continue
        text = _text(value)
        if text is not None:
            return text
    return None


CONTENT_ACCESSORS: List[Accessor] = [*(field_text(f) for f in CONTENT_FIELDS), first_free_string]
SENDER_ACCESSORS: List[Accessor] = [field_ident(f) for f in SENDER_FIELDS]
RECIPIENT_ACCESSORS: List[Accessor] = [field_ident(f) for f in RECIPIENT_FIELDS]
SENDER_NAME_ACCESSORS: List[Accessor] = [field_text(f) for f in SENDER_NAME_FIELDS]


def resolve(raw: Dict[str, Any], accessors: Sequence[Accessor]) -> Optional[Any]:
    for accessor in accessors:
        value = accessor(raw)
        if value is not None:
            return value
    return None


def _epoch_millis(raw: Dict[str, Any]) -> Optional[int]:
    for name in TIMESTAMP_FIELDS:
        value = raw.get(name)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
    return None


def _seconds_object(raw: Dict[str, Any]) -> Optional[int]:
    for name in TIMESTAMP_FIELDS:
        value = raw.get(name)
        if isinstance(value, dict) and isinstance(value.get("seconds"), (int, float)):
            nanos = value.get("nanoseconds") or value.get("nanos") or 0
            extra = int(nanos) // 1_000_000 if isinstance(nanos, (int, float)) else 0
            return int(value["seconds"]) * 1000 + extra
    return None


def parse_date_string(value: str) -> Optional[int]:
    s = value.strip()
    if not s:
        return None
    if s.isdigit():
        return int(s)
    if ":" in s and "-" not in s and "/" not in s and len(s) <= 8:
        # "HH:MM" 或 "HH:MM:SS"：当天的该时刻
        try:
            parts = [int(p) for p in s.split(":")]
            hour, minute = parts[0], parts[1]
            second = parts[2] if len(parts) > 2 else 0
            local = datetime.now().replace(hour=hour, minute=minute, second=second, microsecond=0)
        except (ValueError, IndexError):
            return None
        return int(local.timestamp() * 1000)
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _date_string(raw: Dict[str, Any]) -> Optional[int]:
    for name in TIMESTAMP_FIELDS:
        value = raw.get(name)
        if isinstance(value, str):
            parsed = parse_date_string(value)
            if parsed is not None:
                return parsed
    return None


TIMESTAMP_ACCESSORS: List[Accessor] = [_epoch_millis, _seconds_object, _date_string]


def resolve_id(raw: Dict[str, Any], key: Optional[str], now: int, source_path: Optional[str] = None) -> str:
    """容器 key 即存储 ID。纯数字 key（数组下标）按来源路径限定，保证重复推送时 ID 稳定。"""

    k = key.strip() if isinstance(key, str) else ""
    stored = _text(raw.get("id"))
    if k and not k.isdigit():
        return key
    if stored is not None:
        return stored
    if k:
        return f"{source_path}#{k}" if source_path else k
    return volatile_id(now)


def normalize_record(
    raw: Any,
    ctx: NormalizeContext,
    key: Optional[str] = None,
    now: Optional[int] = None,
) -> NormalizeResult:
    if not isinstance(raw, dict):
        return Unrecognized("not a mapping", key)

    content = resolve(raw, CONTENT_ACCESSORS)
    sender_id = resolve(raw, SENDER_ACCESSORS)
    role_tag = _text(raw.get(ROLE_TAG_FIELD))
    if content is None and sender_id is None and role_tag is None:
        return Unrecognized("no content and no sender", key)

    if sender_id is not None:
        role = "self" if sender_id == ctx.self_id else "counterparty"
    elif role_tag is not None and role_tag == ctx.self_tag:
        role, sender_id = "self", ctx.self_id
    else:
        role, sender_id = "counterparty", ctx.counterparty_id

    recipient_id = resolve(raw, RECIPIENT_ACCESSORS)
    if recipient_id is None:
        recipient_id = ctx.counterparty_id if role == "self" else ctx.self_id

    clock = now if now is not None else now_millis()
    timestamp = resolve(raw, TIMESTAMP_ACCESSORS)
    if timestamp is None:
        timestamp = clock

    read = bool(raw.get("read"))
    status = raw.get("status")
    if status not in STATUS_RANK:
        status = "read" if read else "sent"
    if read:
        status = "read"

    return Message(
        id=resolve_id(raw, key, clock, ctx.source_path),
        conversation_id=ctx.conversation_id,
        content=content or "",
        sender_id=sender_id,
        recipient_id=recipient_id,
        sender_role=role,
        timestamp=int(timestamp),
        read=read,
        status=status,
        sender_name=resolve(raw, SENDER_NAME_ACCESSORS),
        source_path=ctx.source_path,
        source_key=key,
    )


def normalize(
    raw: Any,
    ctx: NormalizeContext,
    key: Optional[str] = None,
    now: Optional[int] = None,
) -> Optional[Message]:
    result = normalize_record(raw, ctx, key=key, now=now)
    return result if isinstance(result, Message) else None


def normalize_snapshot(snapshot: Any, ctx: NormalizeContext, now: Optional[int] = None) -> List[Message]:
    """归一化容器快照下的每条子记录，无法识别的记录直接丢弃。"""

    if isinstance(snapshot, dict):
        items = list(snapshot.items())
    elif isinstance(snapshot, list):
        items = [(str(i), v) for i, v in enumerate(snapshot)]
    else:
        return []
    messages: List[Message] = []
    for key, value in items:
        result = normalize_record(value, ctx, key=str(key), now=now)
        if isinstance(result, Message):
            messages.append(result)
    return messages
