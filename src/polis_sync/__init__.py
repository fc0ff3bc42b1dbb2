"""
polis-sync

个人发布节点的统一同步引擎：用一个 cursor 轮询 discovery service 的事件流，
把事件分发给通知 / blessing / feed / 关注者 / 评论状态等 projection，
让本地状态与网络最终一致（幂等、不重复处理、不丢更新）。
"""

from .models import HandlerResult, StreamEvent, SyncResult

__all__ = [
    "HandlerResult",
    "StreamEvent",
    "SyncResult",
]
