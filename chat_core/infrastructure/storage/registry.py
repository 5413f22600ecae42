import copy
from typing import Any, Dict, List, Optional


class InMemoryRegistry:
    """请求/订单文档注册表的内存实现。"""

    def __init__(self, collections: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = copy.deepcopy(collections or {})

    def add(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(doc)

    async def get_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._collections.get(collection, {}).get(doc_id)
        if doc is None:
            return None
        return {"id": doc_id, **copy.deepcopy(doc)}

    async def query_by_field(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        wanted = value if isinstance(value, (list, tuple, set)) else [value]
        items: List[Dict[str, Any]] = []
        for doc_id, doc in self._collections.get(collection, {}).items():
            if doc.get(field) in wanted:
                items.append({"id": doc_id, **copy.deepcopy(doc)})
        return items
