from typing import Dict, FrozenSet, List


class InMemoryPathIndex:
    """参与者对 -> 已确认的消息路径。与参与者顺序无关。"""

    def __init__(self) -> None:
        self._paths: Dict[FrozenSet[str], List[str]] = {}

    @staticmethod
    def _key(self_id: str, counterparty_id: str) -> FrozenSet[str]:
        return frozenset((self_id, counterparty_id))

    def lookup(self, self_id: str, counterparty_id: str) -> List[str]:
        return list(self._paths.get(self._key(self_id, counterparty_id), []))

    def record(self, self_id: str, counterparty_id: str, path: str) -> None:
        paths = self._paths.setdefault(self._key(self_id, counterparty_id), [])
        if path not in paths:
            paths.append(path)
