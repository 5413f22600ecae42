"""统一的会话与消息数据模型。

本模块定义了聊天同步引擎内部共享的标准数据结构：

- Message: 规范化后的消息，与底层存储的记录形状无关。
- Conversation: 两个参与者之间的逻辑会话，与物理存储位置无关。
- PathCandidate: 对会话消息存放位置的一个假设。
- ListenerHandle: 对某一路径的一个活动订阅。
- Unrecognized: 规范化失败时返回的标记值。

存储层的原始记录只在 normalizer 中被解析，其余模块只依赖这些模型。
"""

from dataclasses import dataclass, field, replace
from typing import Callable, Literal, Optional, Set


SenderRole = Literal["self", "counterparty"]
MessageStatus = Literal["sent", "delivered", "read"]
PathOrigin = Literal["template", "discovered"]

# 状态只能单向前进：sent -> delivered -> read
STATUS_RANK = {"sent": 0, "delivered": 1, "read": 2}

# 本地合成的消息 ID 前缀，表示该 ID 不是存储分配的
VOLATILE_ID_PREFIX = "local-"


@dataclass(frozen=True)
class Message:
    """一条规范化消息。

    - id: 存储分配的 key；没有时为本地合成 ID（以 "local-" 开头）。
    - timestamp: epoch 毫秒，是唯一的排序键。
    - sender_role: 相对于当前会话中的本人，"self" 或 "counterparty"。
    - source_path: 消息来自哪个候选路径，不参与去重。
    - source_key: 记录在 source_path 下的原始 key，写回已读状态时使用。

    消息创建后除 read/status 外不可变。
    """

    id: str
    conversation_id: str
    content: str
    sender_id: Optional[str]
    recipient_id: Optional[str]
    sender_role: SenderRole
    timestamp: int
    read: bool = False
    status: MessageStatus = "sent"
    sender_name: Optional[str] = None
    source_path: Optional[str] = None
    source_key: Optional[str] = None

    @property
    def is_volatile(self) -> bool:
        return self.id.startswith(VOLATILE_ID_PREFIX)

    def advanced_with(self, other: "Message") -> "Message":
        """返回按 ``other`` 推进 read/status 后的消息。"""

        status = self.status
        if STATUS_RANK.get(other.status, 0) > STATUS_RANK.get(status, 0):
            status = other.status
        read = self.read or other.read
        if read and status != "read":
            status = "read"
        if status == self.status and read == self.read:
            return self
        return replace(self, read=read, status=status)

    def to_record(self, sender_tag: str) -> dict:
        """存储写入使用的规范 wire 格式。sender 为写入方的角色标签。"""

        return {
            "content": self.content,
            "senderId": self.sender_id,
            "recipientId": self.recipient_id,
            "senderName": self.sender_name,
            "timestamp": int(self.timestamp),
            "read": bool(self.read),
            "status": self.status,
            "sender": sender_tag,
        }


@dataclass(frozen=True)
class Unrecognized:
    """规范化失败：该记录不是消息（可能是同一容器里的元数据）。"""

    reason: str
    key: Optional[str] = None

    def __bool__(self) -> bool:
        return False


@dataclass
class Conversation:
    id: str
    counterparty_id: str
    owner_id: str
    subject: str = ""
    counterparty_name: Optional[str] = None
    last_message: Optional[str] = None
    last_message_time: Optional[int] = None
    unread_count: int = 0
    kind: Literal["request", "direct"] = "direct"
    discovered_paths: Set[str] = field(default_factory=set)


@dataclass(frozen=True)
class PathCandidate:
    path: str
    origin: PathOrigin


@dataclass
class ListenerHandle:
    """一个活动订阅，由 ListenerManager 独占持有。"""

    path: str
    _teardown: Callable[[], None]
    closed: bool = False

    def teardown(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._teardown()


def direct_conversation_id(a: str, b: str) -> str:
    """两个参与者之间直接会话的确定性 ID（与参数顺序无关）。"""

    first, second = sorted([a, b])
    return f"direct_{first}_{second}"
