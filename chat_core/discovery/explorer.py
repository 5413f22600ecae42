"""存储探索：在存储根节点下有界扫描类聊天容器。

容器是名称包含任一配置关键字（默认 "chat"、"message"、"conversation"）的顶层 key。
容器内以一方参与者为 key、且其下含有另一方 key 的子节点，
产出两级发现路径 ``container/a/b``。

只读。节点缺失或读取失败一律视为"未找到"，不抛错。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from chat_core.config.settings import settings
from chat_core.domain.store import Store
from chat_core.infrastructure.logging.logger import log_event
from chat_core.infrastructure.storage.memory_store import join_path


@dataclass
class DiscoveredContainer:
    path: str
    child_keys: List[str]


@dataclass
class ExplorationResult:
    containers: List[DiscoveredContainer] = field(default_factory=list)
    paths: List[str] = field(default_factory=list)


def is_chat_container(key: str, tokens: Sequence[str]) -> bool:
    name = (key or "").lower()
    return any(t in name for t in tokens)


def find_containers(root: Any, tokens: Sequence[str]) -> List[DiscoveredContainer]:
    if not isinstance(root, dict):
        return []
    found: List[DiscoveredContainer] = []
    for key, value in root.items():
        if not is_chat_container(str(key), tokens):
            continue
        children = list(value.keys()) if isinstance(value, dict) else []
        found.append(DiscoveredContainer(path=str(key), child_keys=[str(k) for k in children]))
    return found


class StoreExplorer:
    def __init__(self, store: Store, tokens: Optional[Sequence[str]] = None):
        self._store = store
        self._tokens = [t.lower() for t in (tokens or settings.chat_container_tokens)]

    @property
    def tokens(self) -> List[str]:
        return list(self._tokens)

    async def read_root(self) -> Any:
        try:
            return await self._store.read("")
        except Exception as e:
            log_event(logging.WARNING, "Store root read failed", {}, error=str(e))
            return None

    async def explore(
        self,
        self_id: str,
        counterparty_id: str,
        root: Any = None,
    ) -> ExplorationResult:
        if root is None:
            root = await self.read_root()
        containers = find_containers(root, self._tokens)
        result = ExplorationResult(containers=containers)
        if not containers:
            return result

        pending: List[Tuple[str, str, str]] = []
        for container in containers:
            node = root.get(container.path)
            for first, second in ((self_id, counterparty_id), (counterparty_id, self_id)):
                if first not in container.child_keys:
                    continue
                child = node.get(first) if isinstance(node, dict) else None
                if isinstance(child, dict):
                    if second in child:
                        result.paths.append(join_path(container.path, first, second))
                else:
                    pending.append((container.path, first, second))

        if pending:
            # 浅快照中未展开的子节点，并发点读，不等待兄弟节点
            reads = await asyncio.gather(
                *(self._store.read(join_path(c, first)) for c, first, _ in pending),
                return_exceptions=True,
            )
            for (c, first, second), value in zip(pending, reads):
                if isinstance(value, Exception):
                    log_event(logging.WARNING, "Exploration read failed", {"path": join_path(c, first)}, error=str(value))
                    continue
                if isinstance(value, dict) and second in value:
                    result.paths.append(join_path(c, first, second))

        result.paths = _unique(result.paths)
        log_event(
            logging.INFO,
            "Explored store root",
            {"self_id": self_id, "counterparty_id": counterparty_id},
            containers=len(containers),
            discovered=len(result.paths),
        )
        return result


def _unique(items: List[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)
