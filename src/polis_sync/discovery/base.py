from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..models import StreamEvent


class DiscoveryError(RuntimeError):
    """DS 查询失败（网络错误、HTTP 状态 >= 400、响应无法解析）。"""


@dataclass(frozen=True, slots=True)
class StreamQueryResult:
    events: list[StreamEvent]
    cursor: str
    has_more: bool = False


class DiscoverySource(Protocol):
    """
    Discovery stream 查询接口：从 cursor 之后按过滤条件取一段事件，返回事件与结果 cursor。

    过滤参数为逗号拼接的 domain/type 列表；None 表示不限制。
    """

    def stream_query(
        self,
        cursor: str,
        limit: int,
        *,
        type_filter: str | None = None,
        actor_filter: str | None = None,
        target_filter: str | None = None,
        source_filter: str | None = None,
    ) -> StreamQueryResult: ...


class Signer(Protocol):
    """节点私钥签名（Ed25519 实现在本包之外）。"""

    def sign(self, data: bytes) -> str: ...
