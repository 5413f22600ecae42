"""当前会话的消息同步。"""

from .merge import MessageLedger, merge
from .normalizer import NormalizeContext, normalize, normalize_record

__all__ = ["MessageLedger", "merge", "NormalizeContext", "normalize", "normalize_record"]
