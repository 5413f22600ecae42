"""对外 API 服务模块。

UI 层只通过 Conversation / Message 模型以及两个入口与核心交互：

- open_conversation(counterparty_id): 发现路径、订阅所有候选路径。
- send_message(conversation_id, text): 路由写入并乐观回显。
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from chat_core.config.settings import ChatSettings, settings
from chat_core.conversations.list_builder import ConversationListBuilder, summarize
from chat_core.discovery.explorer import StoreExplorer
from chat_core.discovery.paths import PathCandidateGenerator
from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import Conversation, Message, direct_conversation_id
from chat_core.domain.store import PathIndex, Registry, Store
from chat_core.infrastructure.logging.logger import log_event
from chat_core.infrastructure.storage.http_store import HttpTreeStore
from chat_core.infrastructure.storage.json_store import JsonTreeStore
from chat_core.infrastructure.storage.memory_store import join_path
from chat_core.sync.events import OPEN_CONVERSATION, ChatEventBus
from chat_core.sync.listeners import ListenerManager
from chat_core.sync.merge import MessageLedger
from chat_core.sync.normalizer import NormalizeContext
from chat_core.sync.send_router import OutboundContext, SendRouter


class ChatService:
    """聊天会话门面：持有当前打开的会话、规范消息列表与订阅集合。"""

    def __init__(
        self,
        store: Store,
        registry: Registry,
        self_id: str,
        self_tag: str = "user",
        self_name: Optional[str] = None,
        config: Optional[ChatSettings] = None,
        index: Optional[PathIndex] = None,
        bus: Optional[ChatEventBus] = None,
    ):
        """初始化聊天服务。

        Args:
            store: 分层实时存储
            registry: 请求/订单文档注册表
            self_id: 当前用户 ID
            self_tag: 当前用户在旧记录 sender 字段中的角色标签（如 user、company）
            self_name: 写入消息时附带的显示名
            config: 配置（默认使用全局 settings）
            index: 路径索引（默认内存索引）
            bus: 事件总线（默认新建）
        """
        self._config = config or settings
        self._store = store
        self.self_id = self_id
        self.self_tag = self_tag
        self.self_name = self_name
        self._ledger = MessageLedger()
        self._explorer = StoreExplorer(store, self._config.chat_container_tokens)
        self._generator = PathCandidateGenerator(self._explorer, index, self._config)
        self._listeners = ListenerManager(store, self._ledger)
        self._router = SendRouter(store, self._generator, self._ledger, self._config)
        self._builder = ConversationListBuilder(registry, self._config, self_tag)
        self._bus = bus or ChatEventBus()
        self._conversations: Dict[str, Conversation] = {}
        self._current: Optional[Conversation] = None
        self._unregister: Optional[Callable[[], None]] = None
        self.draft = ""
        self._ledger.observe(self._on_messages)

    @property
    def bus(self) -> ChatEventBus:
        return self._bus

    @property
    def current_conversation(self) -> Optional[Conversation]:
        return self._current

    @property
    def messages(self) -> List[Message]:
        return self._ledger.messages

    @property
    def conversations(self) -> List[Conversation]:
        return list(self._conversations.values())

    @property
    def listeners(self) -> ListenerManager:
        return self._listeners

    def attach(self) -> None:
        """在事件总线上注册“打开会话”处理器（对应界面挂载）。"""
        if self._unregister is None:
            self._unregister = self._bus.register(OPEN_CONVERSATION, self._handle_open_request)

    def detach(self) -> None:
        if self._unregister is not None:
            self._unregister()
            self._unregister = None

    def close(self) -> None:
        """卸载：注销事件处理器并释放全部订阅。"""
        self.detach()
        self._listeners.close()
        self._current = None

    async def refresh_conversations(self) -> List[Conversation]:
        root = await self._explorer.read_root()
        conversations = await self._builder.build(self.self_id, root)
        for conv in conversations:
            for path in conv.discovered_paths:
                if conv.counterparty_id:
                    self._generator.index.record(self.self_id, conv.counterparty_id, path)
            known = self._conversations.get(conv.id)
            if known is not None:
                conv.discovered_paths |= known.discovered_paths
            self._conversations[conv.id] = conv
        return conversations

    async def open_conversation(self, counterparty_id: str, conversation_id: Optional[str] = None) -> Conversation:
        if not counterparty_id:
            raise ValidationError(code="MISSING_COUNTERPARTY", message="counterparty_id is required")
        conv = self._resolve_conversation(counterparty_id, conversation_id)
        generation = self._listeners.begin(conv.id)
        self._current = conv
        log_ctx = {"conversation_id": conv.id, "generation": generation}

        for path in conv.discovered_paths:
            self._generator.index.record(self.self_id, counterparty_id, path)
        candidates = await self._generator.candidates(self.self_id, counterparty_id, conv.id)
        if not self._listeners.is_current(generation):
            log_event(logging.INFO, "Discarded stale exploration", log_ctx)
            return conv

        conv.discovered_paths.update(c.path for c in candidates if c.origin == "discovered")
        ctx = NormalizeContext(
            self_id=self.self_id,
            conversation_id=conv.id,
            counterparty_id=counterparty_id,
            self_tag=self.self_tag,
        )
        await self._listeners.subscribe_all(generation, candidates, ctx)
        return conv

    async def send_message(self, conversation_id: str, text: Optional[str] = None) -> Message:
        """发送消息；失败时草稿保持不变，可直接重试。"""
        if text is not None:
            self.draft = text
        conv = self._current
        if conv is None or conv.id != conversation_id:
            raise ValidationError(code="CONVERSATION_NOT_OPEN", message=f"Conversation {conversation_id} is not open")
        ctx = OutboundContext(
            conversation_id=conv.id,
            self_id=self.self_id,
            counterparty_id=conv.counterparty_id,
            self_tag=self.self_tag,
            self_name=self.self_name,
        )
        echo = await self._router.send(ctx, self.draft, self._listeners.generation)
        if echo.source_path:
            conv.discovered_paths.add(echo.source_path)
        self.draft = ""
        return echo

    async def mark_conversation_read(self) -> int:
        """把对方发来的未读消息标记为已读，并写回各自的来源路径。"""
        unread = self._ledger.unread_from_counterparty()
        if not unread:
            return 0
        self._ledger.apply(self._listeners.generation, [replace(m, read=True, status="read") for m in unread])
        targets = [m for m in unread if m.source_path and (m.source_key or not m.is_volatile)]
        results = await asyncio.gather(
            *(self._store.update(join_path(m.source_path, m.source_key or m.id), {"read": True, "status": "read"}) for m in targets),
            return_exceptions=True,
        )
        for m, res in zip(targets, results):
            if isinstance(res, Exception):
                log_event(
                    logging.WARNING,
                    "Mark read failed",
                    {"conversation_id": m.conversation_id, "path": m.source_path},
                    message_id=m.id,
                    error=str(res),
                )
        return len(unread)

    def _resolve_conversation(self, counterparty_id: str, conversation_id: Optional[str]) -> Conversation:
        if conversation_id and conversation_id in self._conversations:
            return self._conversations[conversation_id]
        if not conversation_id:
            for conv in self._conversations.values():
                if conv.counterparty_id == counterparty_id:
                    return conv
        conv = Conversation(
            id=conversation_id or direct_conversation_id(self.self_id, counterparty_id),
            counterparty_id=counterparty_id,
            owner_id=self.self_id,
        )
        self._conversations[conv.id] = conv
        return conv

    def _handle_open_request(self, payload: Any) -> "asyncio.Task[Conversation]":
        if isinstance(payload, dict):
            coro = self.open_conversation(payload.get("counterparty_id", ""), payload.get("conversation_id"))
        else:
            coro = self.open_conversation(str(payload))
        return asyncio.get_running_loop().create_task(coro)

    def _on_messages(self, messages: List[Message]) -> None:
        conv = self._current
        if conv is None or self._ledger.conversation_id != conv.id:
            return
        summarize(conv, messages)
        conv.discovered_paths.update(m.source_path for m in messages if m.source_path)


def message_to_dict(m: Message) -> Dict[str, Any]:
    return {
        "id": m.id,
        "conversation_id": m.conversation_id,
        "content": m.content,
        "sender_id": m.sender_id,
        "recipient_id": m.recipient_id,
        "sender_role": m.sender_role,
        "sender_name": m.sender_name,
        "timestamp": m.timestamp,
        "read": m.read,
        "status": m.status,
    }


def conversation_to_dict(c: Conversation) -> Dict[str, Any]:
    return {
        "id": c.id,
        "counterparty_id": c.counterparty_id,
        "counterparty_name": c.counterparty_name,
        "owner_id": c.owner_id,
        "subject": c.subject,
        "kind": c.kind,
        "last_message": c.last_message,
        "last_message_time": c.last_message_time,
        "unread_count": c.unread_count,
        "discovered_paths": sorted(c.discovered_paths),
    }


_store: Optional[Store] = None


def get_default_store() -> Store:
    """获取默认存储实例（单例）：配置了 store_base_url 时走 REST，否则用本地 JSON 文件。"""
    global _store
    if _store is None:
        if settings.store_base_url:
            _store = HttpTreeStore(settings.store_base_url, settings.store_auth_token)
        else:
            _store = JsonTreeStore(settings.storage_root)
    return _store


def create_service(
    self_id: str,
    registry: Registry,
    self_tag: str = "user",
    self_name: Optional[str] = None,
    bus: Optional[ChatEventBus] = None,
) -> ChatService:
    """用默认存储创建一个已挂载到事件总线的 ChatService。"""
    service = ChatService(
        store=get_default_store(),
        registry=registry,
        self_id=self_id,
        self_tag=self_tag,
        self_name=self_name,
        bus=bus,
    )
    service.attach()
    return service
