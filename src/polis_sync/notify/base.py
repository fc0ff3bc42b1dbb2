from __future__ import annotations

from typing import Any, Mapping, Protocol


class Renderer(Protocol):
    """
    站点重新渲染入口。

    约定：
    - 每个同步周期最多调用一次（只要有 projection 报告文件变化）
    - 失败抛异常，由 runner 统一捕获并记录
    """

    def render_all(self) -> None: ...


class Publisher(Protocol):
    """把同步结果推送给 UI 订阅者；返回实际送达的订阅者数量。"""

    def publish(self, payload: Mapping[str, Any]) -> int: ...
