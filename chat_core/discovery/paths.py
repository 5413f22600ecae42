"""路径候选生成器。

候选按固定优先级输出：

1. 已发现的两级路径（先查路径索引，未命中再走存储探索）；
2. 该参与者对的全部注册模板；
3. 仅以会话 ID 为键的兜底路径。

全部候选都会返回。真实位置无法预先确定，调用方订阅所有候选，
下游依赖按 ID 去重。
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from chat_core.config.settings import ChatSettings, settings
from chat_core.discovery.explorer import StoreExplorer
from chat_core.discovery.index import InMemoryPathIndex
from chat_core.discovery.templates import PATH_TEMPLATES
from chat_core.domain.models import PathCandidate
from chat_core.domain.store import PathIndex
from chat_core.infrastructure.storage.memory_store import join_path


def template_candidates(self_id: str, counterparty_id: str) -> List[PathCandidate]:
    return [PathCandidate(t.render(self_id, counterparty_id), "template") for t in PATH_TEMPLATES]


def fallback_candidate(conversation_id: str, root: Optional[str] = None) -> PathCandidate:
    return PathCandidate(join_path(root or settings.fallback_root, conversation_id), "template")


def build_candidates(
    self_id: str,
    counterparty_id: str,
    conversation_id: str,
    discovered: Iterable[str] = (),
    fallback_root: Optional[str] = None,
) -> List[PathCandidate]:
    ordered: List[PathCandidate] = [PathCandidate(join_path(p), "discovered") for p in discovered]
    ordered.extend(template_candidates(self_id, counterparty_id))
    ordered.append(fallback_candidate(conversation_id, fallback_root))
    seen = set()
    unique: List[PathCandidate] = []
    for c in ordered:
        if not c.path or c.path in seen:
            continue
        seen.add(c.path)
        unique.append(c)
    return unique


class PathCandidateGenerator:
    def __init__(
        self,
        explorer: Optional[StoreExplorer] = None,
        index: Optional[PathIndex] = None,
        config: Optional[ChatSettings] = None,
    ):
        self._explorer = explorer
        self._index = index if index is not None else InMemoryPathIndex()
        self._config = config or settings

    @property
    def index(self) -> PathIndex:
        return self._index

    async def discover(self, self_id: str, counterparty_id: str) -> List[str]:
        """已知路径；索引未命中时才回退到全量扫描。"""

        known = self._index.lookup(self_id, counterparty_id)
        if known or self._explorer is None or not self._config.explorer_enabled:
            return known
        result = await self._explorer.explore(self_id, counterparty_id)
        for path in result.paths:
            self._index.record(self_id, counterparty_id, path)
        return list(result.paths)

    async def candidates(self, self_id: str, counterparty_id: str, conversation_id: str) -> List[PathCandidate]:
        discovered = await self.discover(self_id, counterparty_id)
        return build_candidates(
            self_id,
            counterparty_id,
            conversation_id,
            discovered=discovered,
            fallback_root=self._config.fallback_root,
        )
