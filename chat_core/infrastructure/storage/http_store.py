"""REST 实时树存储适配器。

约定与常见的实时数据库 REST 接口一致：

- 读取: GET  {base}/{path}.json
- 追加: POST {base}/{path}.json  -> {"name": "<生成的 key>"}
- 更新: PATCH {base}/{path}.json
- 订阅: GET  {base}/{path}.json 且 Accept: text/event-stream，
  每个 put/patch 事件后重新读取该路径并推送完整快照。
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import StoreUnavailable
from chat_core.domain.store import OnValue
from chat_core.infrastructure.logging.logger import log_event
from chat_core.infrastructure.storage.memory_store import join_path


@dataclass(eq=False)
class StreamSubscription:
    path: str
    on_value: OnValue
    task: Optional["asyncio.Task[None]"] = field(default=None, repr=False)
    active: bool = True


class HttpTreeStore:
    def __init__(
        self,
        base_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        base = base_url or settings.store_base_url
        if not base:
            raise ValueError("HttpTreeStore requires a base_url (store_base_url)")
        self._base_url = base.rstrip("/")
        self._auth_token = auth_token if auth_token is not None else settings.store_auth_token
        self._client = client or httpx.AsyncClient(timeout=timeout or settings.http_timeout)

    def _url(self, path: str) -> str:
        p = join_path(path)
        return f"{self._base_url}/{p}.json" if p else f"{self._base_url}/.json"

    def _params(self) -> Dict[str, str]:
        return {"auth": self._auth_token} if self._auth_token else {}

    async def read(self, path: str) -> Any:
        resp = await self._request("GET", path)
        return self._decode(path, resp)

    async def append(self, path: str, record: Dict[str, Any]) -> str:
        resp = await self._request("POST", path, json=record)
        data = self._decode(path, resp)
        key = data.get("name") if isinstance(data, dict) else None
        if not key:
            raise StoreUnavailable(path, "append response did not include a generated key")
        return str(key)

    async def update(self, path: str, values: Dict[str, Any]) -> None:
        await self._request("PATCH", path, json=values)

    async def subscribe(self, path: str, on_value: OnValue) -> StreamSubscription:
        sub = StreamSubscription(path=join_path(path), on_value=on_value)
        on_value(await self.read(sub.path))
        sub.task = asyncio.create_task(self._stream(sub))
        return sub

    def unsubscribe(self, handle: StreamSubscription) -> None:
        handle.active = False
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._client.request(method, self._url(path), params=self._params(), **kwargs)
        except httpx.HTTPError as e:
            raise StoreUnavailable(path, f"{method} failed: {e}")
        if resp.status_code >= 300:
            raise StoreUnavailable(path, f"{method} returned HTTP {resp.status_code}", status=resp.status_code)
        return resp

    @staticmethod
    def _decode(path: str, resp: httpx.Response) -> Any:
        """解析响应体；空响应体视为 None，非 JSON 映射为 StoreUnavailable。"""
        if not resp.content.strip():
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise StoreUnavailable(path, f"invalid JSON body: {e}")

    async def _stream(self, sub: StreamSubscription) -> None:
        log_ctx = {"path": sub.path}
        headers = {"Accept": "text/event-stream"}
        try:
            async with self._client.stream(
                "GET", self._url(sub.path), params=self._params(), headers=headers
            ) as resp:
                if resp.status_code >= 300:
                    log_event(logging.WARNING, "Event stream rejected", log_ctx, status=resp.status_code)
                    return
                event: Optional[str] = None
                async for line in resp.aiter_lines():
                    if not sub.active:
                        return
                    if line.startswith("event:"):
                        event = line[len("event:"):].strip()
                    elif line.startswith("data:"):
                        data = line[len("data:"):].strip()
                        await self._on_event(sub, event, data)
                    elif not line:
                        event = None
        except (httpx.HTTPError, StoreUnavailable) as e:
            log_event(logging.WARNING, "Event stream failed", log_ctx, error=str(e))
            return
        log_event(logging.INFO, "Event stream closed", log_ctx)

    async def _on_event(self, sub: StreamSubscription, event: Optional[str], data: str) -> None:
        if event in ("keep-alive", None):
            return
        if event in ("cancel", "auth_revoked"):
            log_event(logging.WARNING, "Event stream revoked", {"path": sub.path}, event=event, data=data)
            sub.active = False
            return
        if event not in ("put", "patch"):
            return
        try:
            json.loads(data)
        except ValueError:
            log_event(logging.WARNING, "Malformed event payload", {"path": sub.path}, event=event)
            return
        value = await self.read(sub.path)
        if sub.active:
            sub.on_value(value)
