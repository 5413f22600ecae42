"""会话列表构建。

遍历存储根节点下的类聊天容器，生成会话摘要：

- ``container/<self>/<other>`` 与 ``container/<other>/<self>`` 为与 ``other`` 的直接会话；
- 其余子节点视为以需求/订单 ID 为 key 的消息集合。与注册表交叉匹配，
  命中时由注册表提供主题和对方；否则取消息中不是当前用户的参与者作为对方（"直接会话"）。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from chat_core.config.settings import ChatSettings, settings
from chat_core.discovery.explorer import find_containers
from chat_core.domain.models import Conversation, Message, direct_conversation_id
from chat_core.domain.store import Registry
from chat_core.infrastructure.logging.logger import log_event
from chat_core.infrastructure.storage.memory_store import join_path
from chat_core.sync.merge import merge
from chat_core.sync.normalizer import (
    RECIPIENT_ACCESSORS,
    SENDER_ACCESSORS,
    NormalizeContext,
    normalize_snapshot,
    resolve,
)


DIRECT_CHAT_SUBJECT = "Direct chat"


def summarize(conversation: Conversation, messages: List[Message]) -> Conversation:
    if messages:
        last = max(messages, key=lambda m: (m.timestamp, m.id))
        conversation.last_message = last.content
        conversation.last_message_time = last.timestamp
    conversation.unread_count = sum(1 for m in messages if m.sender_role == "counterparty" and not m.read)
    return conversation


def filter_conversations(conversations: Iterable[Conversation], term: str) -> List[Conversation]:
    needle = (term or "").strip().lower()
    if not needle:
        return list(conversations)
    return [
        c
        for c in conversations
        if needle in (c.counterparty_name or "").lower()
        or needle in (c.subject or "").lower()
        or needle in (c.id or "").lower()
    ]


def total_unread(conversations: Iterable[Conversation]) -> int:
    return sum(c.unread_count for c in conversations)


def _explicit_participants(records: Dict[str, Any]) -> Set[str]:
    """记录自身显式声明的参与者 ID，不做推断。"""

    found: Set[str] = set()
    for raw in records.values():
        if not isinstance(raw, dict):
            continue
        for accessors in (SENDER_ACCESSORS, RECIPIENT_ACCESSORS):
            value = resolve(raw, accessors)
            if value is not None:
                found.add(value)
    return found


def _first_field(doc: Dict[str, Any], fields: Iterable[str]) -> Optional[str]:
    for name in fields:
        value = doc.get(name)
        if isinstance(value, str) and value.strip():
            return value
    return None


class ConversationListBuilder:
    def __init__(
        self,
        registry: Registry,
        config: Optional[ChatSettings] = None,
        self_tag: Optional[str] = None,
    ):
        self._registry = registry
        self._config = config or settings
        self._self_tag = self_tag

    async def build(self, self_id: str, root: Any) -> List[Conversation]:
        containers = find_containers(root, self._config.chat_container_tokens)
        if not containers:
            return []

        direct: Dict[str, Tuple[Conversation, List[Message]]] = {}
        keyed: List[Tuple[str, str, Any]] = []
        for container in containers:
            node = root.get(container.path)
            if not isinstance(node, dict):
                continue
            for key, value in node.items():
                if not isinstance(value, dict):
                    continue
                if key == self_id:
                    for other, msgs in value.items():
                        if isinstance(msgs, dict):
                            self._add_direct(direct, self_id, other, join_path(container.path, key, other), msgs)
                elif isinstance(value.get(self_id), dict):
                    self._add_direct(direct, self_id, key, join_path(container.path, key, self_id), value[self_id])
                else:
                    keyed.append((container.path, key, value))

        conversations = [summarize(conv, msgs) for conv, msgs in direct.values()]
        if keyed:
            docs = await asyncio.gather(
                *(self._registry.get_by_id(self._config.registry_collection, key) for _, key, _ in keyed),
                return_exceptions=True,
            )
            for (container_path, key, value), doc in zip(keyed, docs):
                if isinstance(doc, Exception):
                    log_event(logging.WARNING, "Registry lookup failed", {"conversation_id": key}, error=str(doc))
                    doc = None
                conv = self._keyed_conversation(self_id, container_path, key, value, doc)
                if conv is not None:
                    conversations.append(conv)

        conversations.sort(key=lambda c: c.last_message_time or 0, reverse=True)
        log_event(logging.INFO, "Built conversation list", {"self_id": self_id}, conversations=len(conversations))
        return conversations

    def _add_direct(
        self,
        direct: Dict[str, Tuple[Conversation, List[Message]]],
        self_id: str,
        other: str,
        path: str,
        records: Dict[str, Any],
    ) -> None:
        conv_id = direct_conversation_id(self_id, other)
        ctx = NormalizeContext(self_id=self_id, conversation_id=conv_id, counterparty_id=other,
                               self_tag=self._self_tag, source_path=path)
        messages = normalize_snapshot(records, ctx)
        if conv_id in direct:
            conv, existing = direct[conv_id]
            conv.discovered_paths.add(path)
            direct[conv_id] = (conv, merge(existing, messages))
            return
        conv = Conversation(
            id=conv_id,
            counterparty_id=other,
            owner_id=self_id,
            subject=DIRECT_CHAT_SUBJECT,
            kind="direct",
            discovered_paths={path},
        )
        direct[conv_id] = (conv, messages)

    def _keyed_conversation(
        self,
        self_id: str,
        container_path: str,
        key: str,
        records: Dict[str, Any],
        doc: Optional[Dict[str, Any]],
    ) -> Optional[Conversation]:
        path = join_path(container_path, key)
        cfg = self._config
        if doc is not None:
            owners = [doc.get(f) for f in cfg.registry_owner_fields]
            if self_id not in owners:
                return None
            counterparty = next((o for o in owners if isinstance(o, str) and o and o != self_id), "")
            ctx = NormalizeContext(self_id=self_id, conversation_id=key, counterparty_id=counterparty or None,
                                   self_tag=self._self_tag, source_path=path)
            conv = Conversation(
                id=key,
                counterparty_id=counterparty,
                owner_id=self_id,
                subject=_first_field(doc, cfg.registry_subject_fields) or "",
                counterparty_name=_first_field(doc, cfg.registry_name_fields),
                kind="request",
                discovered_paths={path},
            )
            return summarize(conv, normalize_snapshot(records, ctx))

        participants = _explicit_participants(records)
        if self_id not in participants:
            return None
        others = sorted(p for p in participants if p != self_id)
        if not others:
            return None
        ctx = NormalizeContext(self_id=self_id, conversation_id=key, counterparty_id=others[0],
                               self_tag=self._self_tag, source_path=path)
        messages = normalize_snapshot(records, ctx)
        conv = Conversation(
            id=key,
            counterparty_id=others[0],
            owner_id=self_id,
            subject=DIRECT_CHAT_SUBJECT,
            kind="direct",
            discovered_paths={path},
        )
        return summarize(conv, messages)
