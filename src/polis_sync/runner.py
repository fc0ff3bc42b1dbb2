from __future__ import annotations

import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from .config import AppConfig
from .cursor import cursor_greater, cursor_less, is_unset, min_cursor
from .discovery import CommandSigner, DiscoveryClient, DiscoveryError, DiscoverySource
from .http_utils import HttpClient
from .models import StreamEvent, SyncResult, utc_now
from .notify.base import Publisher, Renderer
from .notify.broadcast import Broadcaster
from .notify.formatter import format_counts, format_sync_summary
from .notify.render import CommandRenderer, NullRenderer
from .projections.base import ProjectionHandler, filter_events
from .projections.blessings import BlessingProjector
from .projections.comment_status import CommentStatusProjector
from .projections.feed import FeedProjector
from .projections.followers import FollowerProjector
from .projections.notifications import NotificationProjector
from .remote import RemoteClient
from .site.following import load_followed_domains
from .state.sqlite_store import SqliteStateStore
from .state.store import StateStore
from .urls import join_domains


logger = logging.getLogger(__name__)

SYNC_STREAM = "polis.sync"
LEGACY_STREAMS = ("polis.notification", "polis.follow", "polis.feed")


def _event_order(a: StreamEvent, b: StreamEvent) -> int:
    if cursor_less(a.id, b.id):
        return -1
    if cursor_less(b.id, a.id):
        return 1
    return 0


@dataclass(slots=True)
class SyncRunner:
    """
    统一同步引擎：一个 cursor、最多三次 DS 查询、按类型分发给所有 projection。

    一次周期：
    - 读取统一 cursor（首次运行从旧的分 handler cursor 取最小值迁移）
    - target / source / 关注作者 三个查询共享同一 cursor，结果按 id 去重
    - 每个 projection 只收到自己声明的事件类型
    - cursor 只前进不后退；有文件变化时只渲染一次；最后广播 counts
    """

    store: StateStore
    discovery: DiscoverySource | None
    local_domain: str
    data_dir: str
    handlers: tuple[ProjectionHandler, ...]
    renderer: Renderer = field(default_factory=NullRenderer)
    publisher: Publisher | None = None
    query_limit: int = 1000
    followed_domains: Callable[[str], frozenset[str]] = load_followed_domains

    def unified_cursor(self) -> str:
        cursor = self.store.get_cursor(SYNC_STREAM)
        if not is_unset(cursor):
            return cursor
        # 首次统一同步：取旧 cursor 的最小值，宁可重放也不漏事件
        legacy = min_cursor(self.store.get_cursor(k) for k in LEGACY_STREAMS)
        if legacy is not None:
            logger.info("migrating legacy cursors: stream=%s cursor=%s", SYNC_STREAM, legacy)
            return legacy
        return "0"

    def query_events(self, cursor: str) -> tuple[list[StreamEvent], str, int]:
        """执行 2~3 次查询，返回 (去重后的事件, 最大结果 cursor, 失败查询数)。"""
        assert self.discovery is not None
        queries: list[tuple[str, dict[str, str]]] = [
            ("target_domain", {"target_filter": self.local_domain}),
            ("source_domain", {"source_filter": self.local_domain}),
        ]
        followed = sorted(self.followed_domains(self.data_dir))
        if followed:
            queries.append(("followed_author", {"actor_filter": join_domains(followed)}))

        seen: set[str] = set()
        events: list[StreamEvent] = []
        new_cursor = cursor
        errors = 0
        for label, filters in queries:
            try:
                result = self.discovery.stream_query(cursor, self.query_limit, **filters)
            except DiscoveryError as e:
                errors += 1
                logger.warning("stream query failed: query=%s cursor=%s error=%s", label, cursor, e)
                continue
            for event in result.events:
                if event.id in seen:
                    continue
                seen.add(event.id)
                events.append(event)
            if result.cursor and cursor_greater(result.cursor, new_cursor):
                new_cursor = result.cursor
            if result.has_more:
                logger.debug("stream query truncated: query=%s limit=%d", label, self.query_limit)

        events.sort(key=functools.cmp_to_key(_event_order))
        return events, new_cursor, errors

    def run_once(self) -> SyncResult:
        started_at = utc_now()
        start_t = time.monotonic()
        result = SyncResult(started_at=started_at)

        if self.discovery is None or not self.local_domain:
            logger.debug("sync skipped: discovery or base_url not configured")
            return self._finish(result, start_t)

        self.store.ensure_schema()

        cursor = self.unified_cursor()
        result.cursor_before = cursor
        result.cursor_after = cursor

        events, new_cursor, query_errors = self.query_events(cursor)
        result.events_fetched = len(events)
        result.query_errors = query_errors

        if events:
            logger.debug("sync processing: events=%d cursor=%s", len(events), cursor)
            self._fan_out(events, result)

        # 即使某个 projection 失败 cursor 也会前进：该 projection 会错过这些事件
        if cursor_greater(new_cursor, cursor):
            self.store.advance_cursor(SYNC_STREAM, new_cursor)
            result.cursor_after = new_cursor

        if not events:
            return self._finish(result, start_t)

        if result.files_changed:
            try:
                self.renderer.render_all()
                result.rendered = True
            except Exception:  # noqa: BLE001
                logger.exception("render failed: renderer=%s", type(self.renderer).__name__)

        if self.publisher is not None:
            delivered = self.publisher.publish(format_counts(result))
            logger.debug("counts broadcast: delivered=%d", delivered)

        return self._finish(result, start_t)

    def _fan_out(self, events: list[StreamEvent], result: SyncResult) -> None:
        for handler in self.handlers:
            filtered = filter_events(events, handler.event_types())
            if not filtered:
                continue
            name = handler.name()
            try:
                hr = handler.process(filtered)
            except Exception:  # noqa: BLE001
                result.handler_errors += 1
                logger.exception("projection failed: handler=%s events=%d", name, len(filtered))
                continue
            if hr.error:
                result.handler_errors += 1
                logger.warning("projection reported error: handler=%s error=%s", name, hr.error)
            if hr.files_changed:
                result.files_changed = True

            if name == "notifications":
                result.new_notifications += hr.new_items
            elif name == "feed":
                result.new_feed_items += hr.new_items
            elif name == "followers":
                result.followers_changed = result.followers_changed or hr.files_changed
            elif name == "comment-status":
                result.comments_changed = result.comments_changed or hr.files_changed

    def _finish(self, result: SyncResult, start_t: float) -> SyncResult:
        result.finished_at = utc_now()
        result.duration_ms = int((time.monotonic() - start_t) * 1000)
        if result.events_fetched or result.query_errors or result.handler_errors:
            logger.info("sync done: duration_ms=%d %s", result.duration_ms, format_sync_summary(result))
        return result


def build_runner(config: AppConfig, *, broadcaster: Broadcaster | None = None) -> SyncRunner:
    """
    根据配置装配 SyncRunner。

    - projection 列表在这里一次性确定，运行期间不再变化
    - API key 只从环境变量读取
    - 没有 discovery 地址或 key 时 runner 不发起任何网络请求
    """
    local_domain = config.local_domain
    store = SqliteStateStore(config.sqlite_path, namespace=config.discovery_domain or "default")

    discovery: DiscoveryClient | None = None
    api_key = config.discovery_key()
    if config.discovery is not None and api_key:
        signer = CommandSigner(config.signing.command) if config.signing.command else None
        discovery = DiscoveryClient(
            base_url=config.discovery.url,
            api_key=api_key,
            http=HttpClient(timeout_seconds=config.discovery.timeout_seconds),
            domain=local_domain if signer is not None else None,
            signer=signer,
        )

    fetcher = RemoteClient(http=HttpClient(timeout_seconds=config.remote_timeout_seconds, max_retries=0))
    handlers: tuple[ProjectionHandler, ...] = (
        NotificationProjector(store=store, local_domain=local_domain, data_dir=config.data_dir),
        BlessingProjector(store=store, local_domain=local_domain, data_dir=config.data_dir, fetcher=fetcher),
        FeedProjector(store=store, local_domain=local_domain, data_dir=config.data_dir),
        FollowerProjector(store=store, local_domain=local_domain),
        CommentStatusProjector(
            data_dir=config.data_dir,
            base_url=config.base_url,
            local_domain=local_domain,
            hook_path=config.post_comment_hook,
        ),
    )

    renderer: Renderer = (
        CommandRenderer(command=config.render_command, cwd=config.data_dir) if config.render_command else NullRenderer()
    )

    return SyncRunner(
        store=store,
        discovery=discovery,
        local_domain=local_domain,
        data_dir=config.data_dir,
        handlers=handlers,
        renderer=renderer,
        publisher=broadcaster,
        query_limit=config.discovery.query_limit if config.discovery is not None else 1000,
    )
