"""当前会话的监听管理。

每个会话的状态依次为 ``idle -> subscribing -> active``。切换会话时先同步释放上一会话的全部句柄，
再递增 generation，之后才允许新订阅开始，旧路径的迟到推送不会进入新会话的列表。

句柄统一放在 ``SubscriptionGroup`` 中整体释放，调用方不单独跟踪句柄。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, List, Literal, Optional, Sequence

from chat_core.domain.models import ListenerHandle, PathCandidate
from chat_core.domain.store import Store
from chat_core.infrastructure.logging.logger import log_event
from chat_core.sync.merge import MessageLedger
from chat_core.sync.normalizer import NormalizeContext, normalize_snapshot


ListenerState = Literal["idle", "subscribing", "active"]


class SubscriptionGroup:
    """一组监听句柄，关闭该组即释放其中全部句柄。"""

    def __init__(self, scope: Optional[str] = None) -> None:
        self.scope = scope
        self._handles: List[ListenerHandle] = []
        self.closed = False

    def add(self, handle: ListenerHandle) -> bool:
        if self.closed:
            handle.teardown()
            return False
        self._handles.append(handle)
        return True

    @property
    def paths(self) -> List[str]:
        return [h.path for h in self._handles]

    def __len__(self) -> int:
        return len(self._handles)

    def close(self) -> None:
        self.closed = True
        handles, self._handles = self._handles, []
        for handle in handles:
            handle.teardown()

    def __enter__(self) -> "SubscriptionGroup":
        return self

    def __exit__(self, *exc: Any) -> bool:
        self.close()
        return False


class ListenerManager:
    def __init__(self, store: Store, ledger: MessageLedger):
        self._store = store
        self._ledger = ledger
        self._group = SubscriptionGroup()
        self._group.closed = True
        self._generation = 0
        self._state: ListenerState = "idle"
        self._conversation_id: Optional[str] = None

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def conversation_id(self) -> Optional[str]:
        return self._conversation_id

    @property
    def active_paths(self) -> List[str]:
        return self._group.paths

    def is_current(self, generation: int) -> bool:
        return generation == self._generation and self._conversation_id is not None

    def begin(self, conversation_id: str) -> int:
        """释放上一会话并返回新的 generation 令牌。"""

        self._release()
        self._generation += 1
        self._conversation_id = conversation_id
        self._group = SubscriptionGroup(scope=conversation_id)
        self._ledger.reset(conversation_id, self._generation)
        return self._generation

    def close(self) -> None:
        self._release()
        self._generation += 1
        self._conversation_id = None
        self._ledger.reset(None, self._generation)

    async def subscribe_all(
        self,
        generation: int,
        candidates: Sequence[PathCandidate],
        ctx: NormalizeContext,
    ) -> int:
        if not self.is_current(generation):
            return 0
        self._state = "subscribing"
        group = self._group
        handles = await asyncio.gather(
            *(self._subscribe_one(generation, group, c.path, ctx) for c in candidates)
        )
        opened = sum(1 for h in handles if h is not None)
        if self.is_current(generation):
            self._state = "active"
            log_event(
                logging.INFO,
                "Listeners active",
                {"conversation_id": self._conversation_id, "generation": generation},
                candidates=len(candidates),
                opened=opened,
            )
        return opened

    def _release(self) -> None:
        if self._group.closed and not len(self._group):
            self._state = "idle"
            return
        released = len(self._group)
        self._group.close()
        self._state = "idle"
        log_event(
            logging.INFO,
            "Listeners released",
            {"conversation_id": self._conversation_id, "generation": self._generation},
            released=released,
        )

    async def _subscribe_one(
        self,
        generation: int,
        group: SubscriptionGroup,
        path: str,
        ctx: NormalizeContext,
    ) -> Optional[ListenerHandle]:
        path_ctx = replace(ctx, source_path=path)

        def on_value(snapshot: Any) -> None:
            if not self.is_current(generation):
                log_event(logging.DEBUG, "Dropped stale delivery", {"path": path}, generation=generation)
                return
            self._ledger.apply(generation, normalize_snapshot(snapshot, path_ctx))

        try:
            store_handle = await self._store.subscribe(path, on_value)
        except Exception as e:
            log_event(
                logging.WARNING,
                "Subscription failed",
                {"conversation_id": ctx.conversation_id, "path": path},
                error=str(e),
            )
            return None

        handle = ListenerHandle(path=path, _teardown=lambda: self._store.unsubscribe(store_handle))
        if not self.is_current(generation):
            handle.teardown()
            return None
        if not group.add(handle):
            return None
        return handle
