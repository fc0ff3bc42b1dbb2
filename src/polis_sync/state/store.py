from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Protocol

from ..models import CachedFeedItem, NotificationEntry


@dataclass(frozen=True, slots=True)
class CursorEntry:
    position: str
    updated_at: str


class StateStore(Protocol):
    """
    状态层接口（按 discovery 域名隔离）：
    - cursor：每个逻辑 stream 的进度
    - projection state：各 projection 的 JSON 状态
    - config：用户配置（通知规则 / feed 上限）
    - notifications / feed_items：通知日志与 feed 缓存
    """

    def ensure_schema(self) -> None: ...

    def get_cursor(self, stream: str) -> str: ...

    def get_cursor_entry(self, stream: str) -> CursorEntry | None: ...

    def set_cursor(self, stream: str, token: str) -> None: ...

    def advance_cursor(self, stream: str, token: str) -> bool: ...

    def load_state(self, name: str) -> dict[str, Any] | None: ...

    def save_state(self, name: str, state: dict[str, Any]) -> None: ...

    def load_config(self, name: str) -> dict[str, Any] | None: ...

    def save_config(self, name: str, config: dict[str, Any]) -> None: ...

    def append_notifications(self, entries: Iterable[NotificationEntry]) -> int: ...

    def list_notifications(self) -> list[NotificationEntry]: ...

    def mark_notifications_read(self, ids: Iterable[str] | None, read_at: str) -> int: ...

    def unread_notification_count(self) -> int: ...

    def prune_notifications(self, *, max_items: int, max_age_days: int) -> int: ...

    def merge_feed_items(self, items: Iterable[CachedFeedItem]) -> int: ...

    def list_feed_items(self) -> list[CachedFeedItem]: ...

    def set_feed_read(self, item_id: str, read_at: str | None) -> bool: ...

    def set_all_feed_read(self, read_at: str) -> int: ...

    def set_feed_unread_from(self, published: str) -> int: ...

    def prune_feed(self, *, max_items: int, max_age_days: int) -> int: ...
