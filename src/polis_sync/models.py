from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Mapping


FOLLOW_ANNOUNCED = "polis.follow.announced"
FOLLOW_REMOVED = "polis.follow.removed"
BLESSING_REQUESTED = "polis.blessing.requested"
BLESSING_GRANTED = "polis.blessing.granted"
BLESSING_DENIED = "polis.blessing.denied"
BLESSING_REVOKED = "polis.blessing.revoked"
POST_PUBLISHED = "polis.post.published"
POST_REPUBLISHED = "polis.post.republished"
COMMENT_PUBLISHED = "polis.comment.published"
COMMENT_REPUBLISHED = "polis.comment.republished"


class PayloadError(ValueError):
    """事件字段缺失或类型不符（typed accessor 显式失败，而不是静默返回空值）。"""


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def format_timestamp(dt: datetime) -> str:
    return dt.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_rfc3339_datetime(value: str) -> datetime:
    """
    解析常见的 RFC3339/ISO8601 时间串为带 tzinfo 的 datetime。

    兼容：
    - 2026-02-10T12:34:56Z
    - 2026-02-10T12:34:56+00:00
    - 2026-02-10T12:34:56.123Z
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def _require_field(obj: Mapping[str, Any], key: str) -> str:
    v = obj.get(key)
    if isinstance(v, bool) or v is None:
        raise PayloadError(f"stream event field {key!r} missing or invalid: {v!r}")
    if isinstance(v, int):
        return str(v)
    if isinstance(v, str) and v:
        return v
    raise PayloadError(f"stream event field {key!r} missing or invalid: {v!r}")


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """
    Discovery stream 中的一条不可变事件。

    - id：DS 日志内的有序 token（数字 id 统一转为十进制字符串）
    - payload：原始字段表，只能通过 typed accessor 读取
    """

    id: str
    type: str
    actor: str
    timestamp: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    signature: str = ""

    @classmethod
    def from_json(cls, obj: Any) -> "StreamEvent":
        if not isinstance(obj, dict):
            raise PayloadError(f"stream event must be an object, got {type(obj).__name__}")
        payload = obj.get("payload")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise PayloadError(f"stream event payload must be an object, got {type(payload).__name__}")
        actor = obj.get("actor") or ""
        timestamp = obj.get("timestamp") or ""
        if not isinstance(actor, str) or not isinstance(timestamp, str):
            raise PayloadError("stream event actor/timestamp must be strings")
        return cls(
            id=_require_field(obj, "id"),
            type=_require_field(obj, "type"),
            actor=actor,
            timestamp=timestamp,
            payload=dict(payload),
            signature=str(obj.get("signature") or ""),
        )

    def get_str(self, key: str) -> str:
        v = self.payload.get(key)
        if v is None:
            return ""
        if not isinstance(v, str):
            raise PayloadError(f"event {self.id} ({self.type}): payload.{key} expected string, got {type(v).__name__}")
        return v

    def require_str(self, key: str) -> str:
        v = self.get_str(key)
        if not v:
            raise PayloadError(f"event {self.id} ({self.type}): payload.{key} is required")
        return v

    def first_str(self, *keys: str) -> str:
        """按顺序返回第一个非空字段值（用于兼容旧字段名，如 comment_url/source_url）。"""
        for k in keys:
            v = self.get_str(k)
            if v:
                return v
        return ""

    def require_first(self, *keys: str) -> str:
        v = self.first_str(*keys)
        if not v:
            raise PayloadError(f"event {self.id} ({self.type}): one of payload.{'/'.join(keys)} is required")
        return v

    def get_mapping(self, key: str) -> Mapping[str, Any]:
        v = self.payload.get(key)
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise PayloadError(f"event {self.id} ({self.type}): payload.{key} expected object, got {type(v).__name__}")
        return v

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "actor": self.actor,
            "timestamp": self.timestamp,
            "payload": dict(self.payload),
            "signature": self.signature,
        }


@dataclass(slots=True)
class HandlerResult:
    new_items: int = 0
    files_changed: bool = False
    error: str | None = None


@dataclass(slots=True)
class SyncResult:
    """
    一次同步周期的汇总结果。

    前四个字段即广播给 UI 订阅者的 counts；其余字段用于日志与排障。
    """

    new_notifications: int = 0
    new_feed_items: int = 0
    followers_changed: bool = False
    comments_changed: bool = False
    files_changed: bool = False
    rendered: bool = False
    cursor_before: str | None = None
    cursor_after: str | None = None
    events_fetched: int = 0
    query_errors: int = 0
    handler_errors: int = 0
    duration_ms: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def counts(self) -> dict[str, Any]:
        return {
            "new_notifications": self.new_notifications,
            "new_feed_items": self.new_feed_items,
            "followers_changed": self.followers_changed,
            "comments_changed": self.comments_changed,
        }


@dataclass(slots=True)
class NotificationEntry:
    """
    通知日志中的一条记录。

    id 即去重键（"<rule_id>:<内容标识>"），同一内容重复出现不会产生第二条通知。
    """

    id: str
    rule_id: str
    actor: str
    icon: str
    message: str
    link: str
    event_ids: tuple[str, ...]
    created_at: str
    read_at: str | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "actor": self.actor,
            "icon": self.icon,
            "message": self.message,
            "link": self.link,
            "event_ids": list(self.event_ids),
            "created_at": self.created_at,
            "read_at": self.read_at,
        }


@dataclass(slots=True)
class CachedFeedItem:
    """
    feed 缓存条目。id 由 author_url 与 url 推导（与插入顺序无关），用于 upsert 去重。
    """

    id: str
    type: str
    title: str
    url: str
    published: str
    author_url: str
    author_domain: str
    cached_at: str
    hash: str = ""
    target_url: str = ""
    target_domain: str = ""
    read_at: str | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "url": self.url,
            "published": self.published,
            "hash": self.hash,
            "author_url": self.author_url,
            "author_domain": self.author_domain,
            "target_url": self.target_url,
            "target_domain": self.target_domain,
            "cached_at": self.cached_at,
            "read_at": self.read_at,
        }
