from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..models import (
    BLESSING_DENIED,
    BLESSING_GRANTED,
    BLESSING_REQUESTED,
    COMMENT_PUBLISHED,
    COMMENT_REPUBLISHED,
    FOLLOW_ANNOUNCED,
    FOLLOW_REMOVED,
    POST_PUBLISHED,
    POST_REPUBLISHED,
    HandlerResult,
    NotificationEntry,
    PayloadError,
    StreamEvent,
    format_timestamp,
    utc_now,
)
from ..rules.matcher import (
    NotificationRule,
    RuleMatcher,
    dedupe_key,
    merge_default_rules,
    resolve_template,
    template_vars_from_event,
)
from ..site.following import load_followed_domains
from ..state.store import StateStore


logger = logging.getLogger(__name__)

CONFIG_NAME = "notifications"
DEFAULT_MAX_ITEMS = 500
DEFAULT_MAX_AGE_DAYS = 90


@dataclass(slots=True)
class NotificationConfig:
    rules: list[NotificationRule] = field(default_factory=list)
    muted_domains: list[str] = field(default_factory=list)
    max_items: int = DEFAULT_MAX_ITEMS
    max_age_days: int = DEFAULT_MAX_AGE_DAYS

    @classmethod
    def from_json(cls, obj: dict[str, Any] | None) -> "NotificationConfig":
        if not obj:
            return cls()
        rules: list[NotificationRule] = []
        for raw in obj.get("rules") or ():
            try:
                rules.append(NotificationRule.from_json(raw))
            except ValueError as e:
                logger.warning("ignoring invalid notification rule: error=%s", e)
        muted = [str(d) for d in obj.get("muted_domains") or () if d]
        max_items = obj.get("max_items")
        max_age_days = obj.get("max_age_days")
        return cls(
            rules=rules,
            muted_domains=muted,
            max_items=max_items if isinstance(max_items, int) and max_items > 0 else DEFAULT_MAX_ITEMS,
            max_age_days=max_age_days if isinstance(max_age_days, int) and max_age_days > 0 else DEFAULT_MAX_AGE_DAYS,
        )

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "rules": [r.to_json_dict() for r in self.rules],
            "muted_domains": list(self.muted_domains),
            "max_items": self.max_items,
            "max_age_days": self.max_age_days,
        }


def load_notification_config(store: StateStore) -> NotificationConfig:
    """读取通知配置；首次运行写入默认规则，之后只补充缺失的默认规则。"""
    cfg = NotificationConfig.from_json(store.load_config(CONFIG_NAME))
    merged, added = merge_default_rules(cfg.rules)
    if added:
        cfg.rules = merged
        store.save_config(CONFIG_NAME, cfg.to_json_dict())
    return cfg


@dataclass(slots=True)
class NotificationProjector:
    store: StateStore
    local_domain: str
    data_dir: str

    def name(self) -> str:
        return "notifications"

    def event_types(self) -> tuple[str, ...]:
        return (
            FOLLOW_ANNOUNCED,
            FOLLOW_REMOVED,
            BLESSING_REQUESTED,
            BLESSING_GRANTED,
            BLESSING_DENIED,
            POST_PUBLISHED,
            POST_REPUBLISHED,
            COMMENT_PUBLISHED,
            COMMENT_REPUBLISHED,
        )

    def build_entries(self, matcher: RuleMatcher, events: Iterable[StreamEvent]) -> list[NotificationEntry]:
        entries: list[NotificationEntry] = []
        for event in events:
            try:
                for rule in matcher.match(event):
                    variables = template_vars_from_event(event)
                    entries.append(
                        NotificationEntry(
                            id=dedupe_key(rule.id, event),
                            rule_id=rule.id,
                            actor=event.actor,
                            icon=rule.icon,
                            message=resolve_template(rule.message, variables),
                            link=resolve_template(rule.link, variables),
                            event_ids=(event.id,),
                            created_at=event.timestamp,
                        )
                    )
            except PayloadError as e:
                logger.warning("skipping event for notifications: event_id=%s error=%s", event.id, e)
        return entries

    def process(self, events: list[StreamEvent]) -> HandlerResult:
        if not self.local_domain:
            return HandlerResult()

        cfg = load_notification_config(self.store)
        matcher = RuleMatcher(
            local_domain=self.local_domain,
            rules=tuple(cfg.rules),
            muted_domains=frozenset(cfg.muted_domains),
            followed_domains=load_followed_domains(self.data_dir),
        )

        entries = self.build_entries(matcher, events)
        if not entries:
            return HandlerResult()

        added = self.store.append_notifications(entries)
        removed = self.store.prune_notifications(max_items=cfg.max_items, max_age_days=cfg.max_age_days)
        if added or removed:
            logger.info("notifications updated: added=%d pruned=%d", added, removed)
        return HandlerResult(new_items=added)


@dataclass(slots=True)
class NotificationLog:
    """通知日志的读取 / 已读标记入口（供 HTTP 层调用，与同步周期并发安全）。"""

    store: StateStore

    def list(self, *, unread_only: bool = False) -> list[NotificationEntry]:
        # 新的在前
        entries = list(reversed(self.store.list_notifications()))
        if unread_only:
            entries = [e for e in entries if e.read_at is None]
        return entries

    def unread_count(self) -> int:
        return self.store.unread_notification_count()

    def mark_read(self, ids: Iterable[str]) -> int:
        return self.store.mark_notifications_read(list(ids), format_timestamp(utc_now()))

    def mark_all_read(self) -> int:
        return self.store.mark_notifications_read(None, format_timestamp(utc_now()))

    def config(self) -> NotificationConfig:
        return load_notification_config(self.store)

    def mute(self, domain: str) -> bool:
        cfg = load_notification_config(self.store)
        if not domain or domain in cfg.muted_domains:
            return False
        cfg.muted_domains.append(domain)
        self.store.save_config(CONFIG_NAME, cfg.to_json_dict())
        return True

    def unmute(self, domain: str) -> bool:
        cfg = load_notification_config(self.store)
        if domain not in cfg.muted_domains:
            return False
        cfg.muted_domains = [d for d in cfg.muted_domains if d != domain]
        self.store.save_config(CONFIG_NAME, cfg.to_json_dict())
        return True
