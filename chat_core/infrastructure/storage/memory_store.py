import copy
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_core.domain.store import OnValue


def split_path(path: str) -> List[str]:
    return [p for p in (path or "").strip("/").split("/") if p]


def join_path(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


def generate_key() -> str:
    """按时间有序的 push key。"""
    return f"-{int(time.time() * 1000):013d}{uuid4().hex[:8]}"


@dataclass(eq=False)
class StoreSubscription:
    path: str
    on_value: OnValue
    active: bool = True


class InMemoryStore:
    """进程内的分层树存储，写入后同步推送给路径上的订阅者。"""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._root: Dict[str, Any] = copy.deepcopy(data) if data else {}
        self._subs: List[StoreSubscription] = []

    async def read(self, path: str) -> Any:
        return self._get(path)

    async def subscribe(self, path: str, on_value: OnValue) -> StoreSubscription:
        sub = StoreSubscription(path=join_path(path), on_value=on_value)
        self._subs.append(sub)
        on_value(self._get(sub.path))
        return sub

    def unsubscribe(self, handle: StoreSubscription) -> None:
        handle.active = False
        if handle in self._subs:
            self._subs.remove(handle)

    async def append(self, path: str, record: Dict[str, Any]) -> str:
        key = generate_key()
        self._put(join_path(path, key), copy.deepcopy(record))
        return key

    async def update(self, path: str, values: Dict[str, Any]) -> None:
        node = self._get(path)
        merged = node if isinstance(node, dict) else {}
        merged.update(copy.deepcopy(values))
        self._put(path, merged)

    def set(self, path: str, value: Any) -> None:
        self._put(path, copy.deepcopy(value))

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._root)

    @property
    def subscription_count(self) -> int:
        return len(self._subs)

    def _get(self, path: str) -> Any:
        node: Any = self._root
        for part in split_path(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    def _put(self, path: str, value: Any) -> None:
        parts = split_path(path)
        if not parts:
            self._root = value if isinstance(value, dict) else {}
        else:
            node = self._root
            for part in parts[:-1]:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child
            if value is None:
                node.pop(parts[-1], None)
            else:
                node[parts[-1]] = value
        self._commit()
        self._notify(join_path(path))

    def _commit(self) -> None:
        """写入后的持久化钩子，子类覆盖。"""

    def _notify(self, written: str) -> None:
        for sub in list(self._subs):
            if not sub.active:
                continue
            if _overlaps(sub.path, written):
                sub.on_value(self._get(sub.path))


def _overlaps(subscribed: str, written: str) -> bool:
    if not subscribed or not written:
        return True
    if subscribed == written:
        return True
    return written.startswith(subscribed + "/") or subscribed.startswith(written + "/")
