from __future__ import annotations

from typing import Iterable, Protocol

from ..models import HandlerResult, StreamEvent


ALL_EVENT_TYPES = "*"


class ProjectionHandler(Protocol):
    """
    Projection 接口：把一批事件折叠进自己的本地状态。

    约定：
    - process 必须幂等（同一事件重复处理不产生额外效果）
    - 单个事件格式错误只跳过该事件；整体失败可以抛异常，由 runner 统一捕获
    """

    def name(self) -> str: ...

    def event_types(self) -> tuple[str, ...]: ...

    def process(self, events: list[StreamEvent]) -> HandlerResult: ...


def filter_events(events: Iterable[StreamEvent], types: Iterable[str]) -> list[StreamEvent]:
    """按声明的类型筛选事件并保持顺序；"*" 表示全部，空声明表示不接收任何事件。"""
    wanted = set(types)
    if not wanted:
        return []
    if ALL_EVENT_TYPES in wanted:
        return list(events)
    return [e for e in events if e.type in wanted]
