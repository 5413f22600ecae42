"""跨组件请求（如"打开该会话"）的事件总线。

处理函数的生命周期是显式的：``register`` 返回用于注销该处理函数的函数。
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

from chat_core.infrastructure.logging.logger import log_event


OPEN_CONVERSATION = "open_conversation"

Handler = Callable[[Any], Any]


class ChatEventBus:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {}

    def register(self, event: str, handler: Handler) -> Callable[[], None]:
        self._handlers.setdefault(event, []).append(handler)

        def unregister() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unregister

    def has_handlers(self, event: str) -> bool:
        return bool(self._handlers.get(event))

    def emit(self, event: str, payload: Any = None) -> List[Any]:
        """调用 ``event`` 的全部处理函数并返回其结果。"""

        handlers = list(self._handlers.get(event, []))
        if not handlers:
            log_event(logging.INFO, "No handler registered", {"event": event})
        return [handler(payload) for handler in handlers]
