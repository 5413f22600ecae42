from typing import Any, Callable, Dict, List, Optional, Protocol


OnValue = Callable[[Any], None]


class Store(Protocol):
    """分层实时键值存储（read / subscribe / append）。

    路径使用 "/" 分隔，例如 "chats/U1/C1"。不存在的节点读取为 None。
    """

    async def read(self, path: str) -> Any:
        ...

    async def subscribe(self, path: str, on_value: OnValue) -> Any:
        """订阅路径；on_value 会被重复调用，每次传入该路径的完整快照。"""
        ...

    def unsubscribe(self, handle: Any) -> None:
        ...

    async def append(self, path: str, record: Dict[str, Any]) -> str:
        """在 path 下追加一条记录，返回存储生成的 key。"""
        ...

    async def update(self, path: str, values: Dict[str, Any]) -> None:
        ...


class Registry(Protocol):
    """文档注册表（请求/订单元数据）。"""

    async def query_by_field(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        ...

    async def get_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...


class PathIndex(Protocol):
    def lookup(self, self_id: str, counterparty_id: str) -> List[str]:
        ...

    def record(self, self_id: str, counterparty_id: str, path: str) -> None:
        ...
