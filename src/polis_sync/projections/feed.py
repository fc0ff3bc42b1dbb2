from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from ..models import (
    COMMENT_PUBLISHED,
    COMMENT_REPUBLISHED,
    POST_PUBLISHED,
    POST_REPUBLISHED,
    CachedFeedItem,
    HandlerResult,
    PayloadError,
    StreamEvent,
    format_timestamp,
    parse_rfc3339_datetime,
    utc_now,
)
from ..site.following import load_followed_domains
from ..state.store import StateStore
from ..urls import extract_domain


logger = logging.getLogger(__name__)

CONFIG_NAME = "feed"
SYNC_STREAM = "polis.sync"

ITEM_TYPE_POST = "post"
ITEM_TYPE_COMMENT = "comment"


def compute_item_id(author_url: str, url: str) -> str:
    """id = sha256(author_url + "|" + url) 的前 16 位十六进制。"""
    return hashlib.sha256(f"{author_url}|{url}".encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class FeedConfig:
    max_items: int = 500
    max_age_days: int = 90
    staleness_minutes: int = 15

    @classmethod
    def from_json(cls, obj: dict[str, Any] | None) -> "FeedConfig":
        if not obj:
            return cls()
        d = cls()

        def _pos(key: str, default: int) -> int:
            v = obj.get(key)
            return v if isinstance(v, int) and not isinstance(v, bool) and v > 0 else default

        return cls(
            max_items=_pos("max_items", d.max_items),
            max_age_days=_pos("max_age_days", d.max_age_days),
            staleness_minutes=_pos("staleness_minutes", d.staleness_minutes),
        )

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "max_items": self.max_items,
            "max_age_days": self.max_age_days,
            "staleness_minutes": self.staleness_minutes,
        }


def event_to_feed_item(event: StreamEvent, cached_at: str) -> CachedFeedItem | None:
    if event.type in (POST_PUBLISHED, POST_REPUBLISHED):
        item_type = ITEM_TYPE_POST
        url = event.get_str("url")
        target_url = ""
    elif event.type in (COMMENT_PUBLISHED, COMMENT_REPUBLISHED):
        item_type = ITEM_TYPE_COMMENT
        url = event.get_str("comment_url")
        target_url = event.first_str("in_reply_to", "target_url")
    else:
        return None
    if not url:
        return None

    metadata = event.get_mapping("metadata")
    title = metadata.get("title")
    published = metadata.get("published_at")
    author_url = "https://" + event.actor
    return CachedFeedItem(
        id=compute_item_id(author_url, url),
        type=item_type,
        title=title if isinstance(title, str) else "",
        url=url,
        published=published if isinstance(published, str) and published else event.timestamp,
        hash=event.get_str("version"),
        author_url=author_url,
        author_domain=event.actor,
        target_url=target_url,
        target_domain=event.get_str("target_domain") or extract_domain(target_url),
        cached_at=cached_at,
    )


@dataclass(slots=True)
class FeedProjector:
    """把关注作者的文章/评论事件合并进 feed 缓存（按 id 去重）。"""

    store: StateStore
    local_domain: str
    data_dir: str

    def name(self) -> str:
        return "feed"

    def event_types(self) -> tuple[str, ...]:
        return (POST_PUBLISHED, POST_REPUBLISHED, COMMENT_PUBLISHED, COMMENT_REPUBLISHED)

    def process(self, events: list[StreamEvent]) -> HandlerResult:
        if not self.local_domain:
            return HandlerResult()
        followed = load_followed_domains(self.data_dir)
        if not followed:
            return HandlerResult()

        cached_at = format_timestamp(utc_now())
        items: list[CachedFeedItem] = []
        for event in events:
            if event.actor == self.local_domain or event.actor not in followed:
                continue
            try:
                item = event_to_feed_item(event, cached_at)
            except PayloadError as e:
                logger.warning("skipping event for feed: event_id=%s error=%s", event.id, e)
                continue
            if item is not None:
                items.append(item)

        if not items:
            return HandlerResult()

        cache = FeedCache(self.store)
        added = self.store.merge_feed_items(items)
        cache.prune()
        return HandlerResult(new_items=added)


@dataclass(slots=True)
class FeedCache:
    """feed 缓存的读取与已读/未读标记（供 HTTP 层调用）。"""

    store: StateStore

    def config(self) -> FeedConfig:
        return FeedConfig.from_json(self.store.load_config(CONFIG_NAME))

    def save_config(self, cfg: FeedConfig) -> None:
        self.store.save_config(CONFIG_NAME, cfg.to_json_dict())

    def list(self, item_type: str | None = None, status: str = "all") -> list[CachedFeedItem]:
        items = self.store.list_feed_items()
        if item_type:
            items = [i for i in items if i.type == item_type]
        if status == "unread":
            items = [i for i in items if i.read_at is None]
        elif status == "read":
            items = [i for i in items if i.read_at is not None]
        return items

    def get(self, item_id: str) -> CachedFeedItem | None:
        for item in self.store.list_feed_items():
            if item.id == item_id:
                return item
        return None

    def unread_count(self) -> int:
        return len(self.list(status="unread"))

    def mark_read(self, item_id: str) -> bool:
        return self.store.set_feed_read(item_id, format_timestamp(utc_now()))

    def mark_unread(self, item_id: str) -> bool:
        return self.store.set_feed_read(item_id, None)

    def mark_all_read(self) -> int:
        return self.store.set_all_feed_read(format_timestamp(utc_now()))

    def mark_unread_from(self, item_id: str) -> bool:
        """把该条目以及发布时间不早于它的所有条目标为未读。"""
        item = self.get(item_id)
        if item is None:
            return False
        self.store.set_feed_unread_from(item.published)
        return True

    def prune(self) -> int:
        cfg = self.config()
        return self.store.prune_feed(max_items=cfg.max_items, max_age_days=cfg.max_age_days)

    def last_updated(self) -> str:
        entry = self.store.get_cursor_entry(SYNC_STREAM)
        return entry.updated_at if entry is not None else ""

    def is_stale(self) -> bool:
        """从未推进过同步 cursor，或距上次推进超过 staleness_minutes。"""
        last = self.last_updated()
        if not last:
            return True
        try:
            updated = parse_rfc3339_datetime(last)
        except ValueError:
            return True
        return utc_now() - updated > timedelta(minutes=self.config().staleness_minutes)
