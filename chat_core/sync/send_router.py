"""发送路由。

写入目标复用路径候选生成器。已确认存有该参与者对数据的候选（先读上一级，再读路径本身）优先尝试，
其余候选按优先级排在其后。列表只遍历一次，全部失败时抛出可重试的 ``WriteFailure``。
首次写入成功后先把回显写入消息账本再返回，界面会先于监听副本显示该消息。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from chat_core.config.settings import ChatSettings, settings
from chat_core.discovery.paths import PathCandidateGenerator
from chat_core.domain.exceptions import OutboundLimitReached, ValidationError, WriteFailure
from chat_core.domain.models import Message, PathCandidate
from chat_core.domain.store import Store
from chat_core.infrastructure.logging.logger import log_event
from chat_core.infrastructure.storage.memory_store import join_path, split_path
from chat_core.sync.merge import MessageLedger
from chat_core.sync.normalizer import now_millis, volatile_id


@dataclass(frozen=True)
class OutboundContext:
    conversation_id: str
    self_id: str
    counterparty_id: str
    self_tag: str
    self_name: Optional[str] = None


class SendRouter:
    def __init__(
        self,
        store: Store,
        generator: PathCandidateGenerator,
        ledger: MessageLedger,
        config: Optional[ChatSettings] = None,
    ):
        self._store = store
        self._generator = generator
        self._ledger = ledger
        self._config = config or settings
        # generation -> 已占用名额但尚未写入成功的发送数
        self._pending: Dict[int, int] = {}

    def pending_sends(self, generation: int) -> int:
        return self._pending.get(generation, 0)

    def check_outbound_gate(self, ctx: OutboundContext, generation: Optional[int] = None) -> None:
        limit = self._config.max_outbound_messages
        in_flight = self.pending_sends(generation) if generation is not None else 0
        if self._ledger.outbound_count() + in_flight >= limit:
            raise OutboundLimitReached(ctx.conversation_id, limit)

    def _reserve(self, ctx: OutboundContext, generation: int) -> None:
        """检查上限并同步占用一个名额；必须在第一个 await 之前调用。"""
        self.check_outbound_gate(ctx, generation)
        self._pending[generation] = self.pending_sends(generation) + 1

    def _release(self, generation: int) -> None:
        remaining = self.pending_sends(generation) - 1
        if remaining > 0:
            self._pending[generation] = remaining
        else:
            self._pending.pop(generation, None)

    async def holds_data(self, path: str) -> bool:
        """``path`` 已存有数据时返回 True（先读上一级，再读路径本身）。"""

        parts = split_path(path)
        try:
            if len(parts) >= 2:
                parent = await self._store.read(join_path(*parts[:-1]))
                if not isinstance(parent, dict) or parts[-1] not in parent:
                    return False
            value = await self._store.read(path)
        except Exception as e:
            log_event(logging.WARNING, "Existence read failed", {"path": path}, error=str(e))
            return False
        return isinstance(value, dict) and bool(value)

    async def plan(self, ctx: OutboundContext) -> List[PathCandidate]:
        candidates = await self._generator.candidates(ctx.self_id, ctx.counterparty_id, ctx.conversation_id)
        confirmed_flags = await asyncio.gather(*(self.holds_data(c.path) for c in candidates))
        confirmed = [c for c, ok in zip(candidates, confirmed_flags) if ok]
        rest = [c for c, ok in zip(candidates, confirmed_flags) if not ok]
        return confirmed + rest

    async def send(self, ctx: OutboundContext, text: str, generation: int) -> Message:
        content = (text or "").strip()
        if not content:
            raise ValidationError(code="EMPTY_MESSAGE", message="Message text is empty")
        self._reserve(ctx, generation)
        try:
            return await self._write(ctx, content, generation)
        finally:
            self._release(generation)

    async def _write(self, ctx: OutboundContext, content: str, generation: int) -> Message:
        timestamp = now_millis()
        outgoing = Message(
            id="",
            conversation_id=ctx.conversation_id,
            content=content,
            sender_id=ctx.self_id,
            recipient_id=ctx.counterparty_id,
            sender_role="self",
            timestamp=timestamp,
            sender_name=ctx.self_name,
        )
        record = outgoing.to_record(ctx.self_tag)
        log_ctx = {"conversation_id": ctx.conversation_id}

        attempted: List[str] = []
        for candidate in await self.plan(ctx):
            attempted.append(candidate.path)
            try:
                key = await self._store.append(candidate.path, record)
            except Exception as e:
                log_event(logging.WARNING, "Write attempt failed", log_ctx, path=candidate.path, error=str(e))
                continue
            self._generator.index.record(ctx.self_id, ctx.counterparty_id, candidate.path)
            echo = Message(
                id=key or volatile_id(timestamp),
                conversation_id=ctx.conversation_id,
                content=content,
                sender_id=ctx.self_id,
                recipient_id=ctx.counterparty_id,
                sender_role="self",
                timestamp=timestamp,
                status="sent",
                sender_name=ctx.self_name,
                source_path=candidate.path,
                source_key=key or None,
            )
            self._ledger.apply(generation, [echo])
            log_event(logging.INFO, "Message sent", log_ctx, path=candidate.path, message_id=echo.id)
            return echo

        log_event(logging.ERROR, "All write attempts failed", log_ctx, attempted=attempted)
        raise WriteFailure("Message could not be sent, please retry", attempted_paths=attempted)
