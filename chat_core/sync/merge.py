"""合并与去重。

``merge`` 为纯函数：消息按 ID 归并，首个写入者保留内容和发送方，
之后的副本只能把 ``read``/``status`` 向前推进。结果按时间戳排序（ID 决定并列顺序），
因此同一批次重复应用、或多个监听器以不同顺序送达，得到的集合一致。

``MessageLedger`` 持有当前会话的权威消息列表，并丢弃带过期 generation 的批次。
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional

from chat_core.domain.models import Message
from chat_core.infrastructure.logging.logger import log_event


Observer = Callable[[List[Message]], None]


def merge(existing: Iterable[Message], incoming: Iterable[Message]) -> List[Message]:
    by_id: Dict[str, Message] = {}
    for source in (existing, incoming):
        for message in source:
            current = by_id.get(message.id)
            by_id[message.id] = message if current is None else current.advanced_with(message)
    return sorted(by_id.values(), key=lambda m: (m.timestamp, m.id))


class MessageLedger:
    def __init__(self) -> None:
        self._conversation_id: Optional[str] = None
        self._generation = 0
        self._messages: List[Message] = []
        self._observers: List[Observer] = []

    @property
    def conversation_id(self) -> Optional[str]:
        return self._conversation_id

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def reset(self, conversation_id: Optional[str], generation: int) -> None:
        self._conversation_id = conversation_id
        self._generation = generation
        self._messages = []
        self._publish()

    def apply(self, generation: int, batch: Iterable[Message]) -> bool:
        """合并一个批次；批次属于旧 generation 时返回 False。"""

        if generation != self._generation or self._conversation_id is None:
            log_event(
                logging.DEBUG,
                "Dropped stale batch",
                {"conversation_id": self._conversation_id},
                batch_generation=generation,
                current_generation=self._generation,
            )
            return False
        merged = merge(self._messages, batch)
        if merged != self._messages:
            self._messages = merged
            self._publish()
        return True

    def outbound_count(self) -> int:
        return sum(1 for m in self._messages if m.sender_role == "self")

    def unread_from_counterparty(self) -> List[Message]:
        return [m for m in self._messages if m.sender_role == "counterparty" and not m.read]

    def observe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _publish(self) -> None:
        snapshot = list(self._messages)
        for observer in list(self._observers):
            observer(snapshot)
