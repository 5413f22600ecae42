import asyncio
import json
import tempfile
from pathlib import Path

import pytest

from chat_core.domain.exceptions import BusinessError
from chat_core.infrastructure.storage.json_store import JsonTreeStore


def test_json_store_persists_appends():
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / ".storage" / "tree.json"
        store = JsonTreeStore(path)
        key = asyncio.run(store.append("chats/C1/U1", {"content": "hola", "senderId": "C1"}))
        assert path.exists()

        reopened = JsonTreeStore(path)
        value = asyncio.run(reopened.read(f"chats/C1/U1/{key}"))
        assert value == {"content": "hola", "senderId": "C1"}


def test_json_store_update_merges_fields():
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / "tree.json"
        path.write_text(json.dumps({"chats": {"C1": {"U1": {"m1": {"content": "a", "read": False}}}}}), encoding="utf-8")
        store = JsonTreeStore(path)
        asyncio.run(store.update("chats/C1/U1/m1", {"read": True, "status": "read"}))

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["chats"]["C1"]["U1"]["m1"] == {"content": "a", "read": True, "status": "read"}
        # 原子写入后不应残留临时文件
        assert [p.name for p in Path(d).iterdir()] == ["tree.json"]


def test_json_store_rejects_corrupt_file():
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / "tree.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(BusinessError) as exc_info:
            JsonTreeStore(path)
        assert exc_info.value.code == "STORE_READ_ERROR"

        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(BusinessError):
            JsonTreeStore(path)
