"""Chat Core 顶层包。

该包提供市场应用消息页面的会话发现与同步引擎，
包括配置加载、领域模型、存储适配、路径发现、
消息规范化与去重合并、订阅管理以及发送路由等能力。
"""

from chat_core.api.service import ChatService, create_service

__all__ = ["ChatService", "create_service"]
