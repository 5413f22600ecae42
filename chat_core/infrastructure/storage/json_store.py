import json
import os
from pathlib import Path
from typing import Any, Dict
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.exceptions import BusinessError
from chat_core.infrastructure.storage.memory_store import InMemoryStore


class JsonTreeStore(InMemoryStore):
    """把整棵树保存在一个 JSON 文件中的存储实现。"""

    def __init__(self, path: str | Path | None = None):
        self._path = Path(path or settings.storage_root).resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(self._load())

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e), path=str(self._path))
        if not isinstance(data, dict):
            raise BusinessError(code="STORE_READ_ERROR", message="store root is not an object", path=str(self._path))
        return data

    def _commit(self) -> None:
        tmp_path = self._path.parent / f"{self._path.name}.{uuid4().hex}.tmp"
        try:
            tmp_path.write_text(json.dumps(self._root, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e), path=str(self._path))
