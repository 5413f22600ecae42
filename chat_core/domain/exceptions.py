"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

本子系统中没有致命错误：读取失败最多让会话“看起来是空的”，
发送失败最多提示“发送失败，请重试”。
"""

from typing import List, Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        extra: 其他补充字段（例如 path、conversation_id 等）。
    """

    def __init__(self, code: str, message: str, **extra):
        self.code = code
        self.message = message
        self.extra = extra
        super().__init__(message)


class StoreUnavailable(BusinessError):
    """某一路径的读取/订阅失败。只影响该路径，不影响其他候选路径。"""

    def __init__(self, path: str, message: str, **extra):
        super().__init__(code="STORE_UNAVAILABLE", message=message, path=path, **extra)
        self.path = path


class WriteFailure(BusinessError):
    """所有候选写入路径都失败。可重试，草稿内容保持不变。"""

    retryable = True

    def __init__(self, message: str, attempted_paths: Optional[List[str]] = None, **extra):
        attempted = list(attempted_paths or [])
        super().__init__(code="WRITE_FAILED", message=message, attempted_paths=attempted, **extra)
        self.attempted_paths = attempted


class OutboundLimitReached(BusinessError):
    """本人在该会话中发送的消息已达上限，写入前即被拒绝。"""

    def __init__(self, conversation_id: str, limit: int):
        super().__init__(
            code="OUTBOUND_LIMIT",
            message=f"Conversation {conversation_id} already has {limit} outgoing messages",
            conversation_id=conversation_id,
            limit=limit,
        )
        self.limit = limit


class ValidationError(BusinessError):
    """参数校验失败（空消息、未知会话等）。"""
