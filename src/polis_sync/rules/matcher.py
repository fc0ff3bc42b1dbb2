from __future__ import annotations

import hashlib
import json
import posixpath
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

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
    StreamEvent,
)


RELEVANCE_TARGET_DOMAIN = "target_domain"
RELEVANCE_SOURCE_DOMAIN = "source_domain"
RELEVANCE_FOLLOWED_AUTHOR = "followed_author"

RELEVANCE_CLASSES = (RELEVANCE_TARGET_DOMAIN, RELEVANCE_SOURCE_DOMAIN, RELEVANCE_FOLLOWED_AUTHOR)

_TEMPLATE_KEYS = ("source_url", "target_url", "target_domain", "source_domain", "in_reply_to", "comment_url")


@dataclass(frozen=True, slots=True)
class NotificationRule:
    """
    一条通知规则：事件类型 + 相关性分类 + 展示模板（icon/message/link 支持 {{var}} 替换）。

    持久化在 config blob "notifications".rules 中，用户可以单独禁用某条规则。
    """

    id: str
    event_type: str
    relevance: str
    enabled: bool = True
    icon: str = ""
    message: str = ""
    link: str = ""

    @classmethod
    def from_json(cls, obj: Any) -> "NotificationRule":
        if not isinstance(obj, dict):
            raise ValueError(f"notification rule must be an object, got {type(obj).__name__}")
        rule_id = obj.get("id")
        event_type = obj.get("event_type")
        if not isinstance(rule_id, str) or not rule_id:
            raise ValueError(f"notification rule id missing: {obj!r}")
        if not isinstance(event_type, str) or not event_type:
            raise ValueError(f"notification rule {rule_id!r} has no event_type")
        relevance = obj.get("relevance")
        if relevance is None and isinstance(obj.get("filter"), dict):
            relevance = obj["filter"].get("relevance")
        template = obj.get("template") if isinstance(obj.get("template"), dict) else obj
        return cls(
            id=rule_id,
            event_type=event_type,
            relevance=str(relevance or ""),
            enabled=bool(obj.get("enabled", True)),
            icon=str(template.get("icon") or ""),
            message=str(template.get("message") or ""),
            link=str(template.get("link") or ""),
        )

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "enabled": self.enabled,
            "relevance": self.relevance,
            "icon": self.icon,
            "message": self.message,
            "link": self.link,
        }


def default_rules() -> list[NotificationRule]:
    """首次同步时写入的内置规则集；后续同步只补充缺失 id 的规则。"""
    return [
        NotificationRule(
            id="new-follower",
            event_type=FOLLOW_ANNOUNCED,
            relevance=RELEVANCE_TARGET_DOMAIN,
            icon="👤",
            message="{{actor}} started following you",
            link="/_/#followers",
        ),
        NotificationRule(
            id="lost-follower",
            event_type=FOLLOW_REMOVED,
            relevance=RELEVANCE_TARGET_DOMAIN,
            icon="👤",
            message="{{actor}} unfollowed you",
            link="/_/#followers",
        ),
        NotificationRule(
            id="blessing-requested",
            event_type=BLESSING_REQUESTED,
            relevance=RELEVANCE_TARGET_DOMAIN,
            icon="🔔",
            message="{{actor}} requested a blessing on {{post_name}}",
            link="/_/#blessings",
        ),
        NotificationRule(
            id="blessing-granted",
            event_type=BLESSING_GRANTED,
            relevance=RELEVANCE_SOURCE_DOMAIN,
            icon="✓",
            message="{{actor}} blessed your comment",
            link="/_/#my-comments-blessed",
        ),
        NotificationRule(
            id="blessing-denied",
            event_type=BLESSING_DENIED,
            relevance=RELEVANCE_SOURCE_DOMAIN,
            icon="✗",
            message="{{actor}} denied your comment",
            link="/_/#my-comments-denied",
        ),
        NotificationRule(
            id="new-comment",
            event_type=COMMENT_PUBLISHED,
            relevance=RELEVANCE_TARGET_DOMAIN,
            icon="💬",
            message="{{actor}} commented on {{post_name}}",
            link="/_/#blessings",
        ),
        NotificationRule(
            id="updated-comment",
            event_type=COMMENT_REPUBLISHED,
            relevance=RELEVANCE_TARGET_DOMAIN,
            enabled=False,
            icon="💬",
            message="{{actor}} updated their comment on {{post_name}}",
            link="/_/#blessings",
        ),
        NotificationRule(
            id="new-post",
            event_type=POST_PUBLISHED,
            relevance=RELEVANCE_FOLLOWED_AUTHOR,
            icon="📝",
            message="{{actor}} published a new post",
            link="/_/#feed",
        ),
        NotificationRule(
            id="updated-post",
            event_type=POST_REPUBLISHED,
            relevance=RELEVANCE_FOLLOWED_AUTHOR,
            enabled=False,
            icon="📝",
            message="{{actor}} updated a post",
            link="/_/#feed",
        ),
    ]


def merge_default_rules(rules: Iterable[NotificationRule]) -> tuple[list[NotificationRule], bool]:
    """
    把缺失 id 的默认规则追加到已保存规则之后。

    已存在的规则原样保留（包括用户的禁用/改写），返回 (合并后的规则, 是否有新增)。
    """
    merged = list(rules)
    existing = {r.id for r in merged}
    added = False
    for d in default_rules():
        if d.id not in existing:
            merged.append(d)
            existing.add(d.id)
            added = True
    return merged, added


def resolve_template(template: str, variables: Mapping[str, str]) -> str:
    result = template
    for k, v in variables.items():
        result = result.replace("{{" + k + "}}", v)
    return result


def template_vars_from_event(event: StreamEvent) -> dict[str, str]:
    variables = {"actor": event.actor, "timestamp": event.timestamp}
    for key in _TEMPLATE_KEYS:
        v = event.get_str(key)
        if v:
            variables[key] = v

    # blessing 事件使用 in_reply_to/comment_url 而不是 target_url
    post_url = event.first_str("target_url", "url", "in_reply_to", "comment_url")
    if post_url:
        base = posixpath.basename(post_url.rstrip("/"))
        if base.endswith(".md"):
            base = base[: -len(".md")]
        variables["post_name"] = base

    title = event.get_mapping("metadata").get("title")
    if isinstance(title, str) and title:
        variables["title"] = title
    return variables


def dedupe_key(rule_id: str, event: StreamEvent) -> str:
    """
    通知去重键："<rule_id>:<内容标识>"。

    内容标识优先级：source_url / comment_url > url > actor@target_domain > payload 哈希。
    """
    source_url = event.first_str("source_url", "comment_url")
    if source_url:
        return f"{rule_id}:{source_url}"
    url = event.get_str("url")
    if url:
        return f"{rule_id}:{url}"
    target_domain = event.get_str("target_domain")
    if target_domain:
        return f"{rule_id}:{event.actor}@{target_domain}"
    raw = json.dumps(dict(event.payload), sort_keys=True, ensure_ascii=False, default=str)
    return f"{rule_id}:{hashlib.sha256(raw.encode('utf-8')).hexdigest()[:16]}"


@dataclass(frozen=True, slots=True)
class RuleMatcher:
    """
    按事件类型与相关性分类匹配通知规则。

    - 自己产生的事件、被静音的 actor 不匹配任何规则
    - target_domain / source_domain：payload 对应字段等于本站域名
    - followed_author：actor 在关注列表中（事件可能经 target/source 查询到达，这里再按关注列表过滤）
    """

    local_domain: str
    rules: tuple[NotificationRule, ...]
    muted_domains: frozenset[str] = frozenset()
    followed_domains: frozenset[str] = frozenset()

    def enabled_event_types(self) -> tuple[str, ...]:
        seen: list[str] = []
        for r in self.rules:
            if r.enabled and r.event_type not in seen:
                seen.append(r.event_type)
        return tuple(seen)

    def rules_by_relevance(self) -> dict[str, list[NotificationRule]]:
        groups: dict[str, list[NotificationRule]] = {}
        for r in self.rules:
            if r.enabled:
                groups.setdefault(r.relevance, []).append(r)
        return groups

    def _relevant(self, rule: NotificationRule, event: StreamEvent) -> bool:
        if rule.relevance == RELEVANCE_TARGET_DOMAIN:
            return event.get_str("target_domain") == self.local_domain
        if rule.relevance == RELEVANCE_SOURCE_DOMAIN:
            return event.get_str("source_domain") == self.local_domain
        if rule.relevance == RELEVANCE_FOLLOWED_AUTHOR:
            return event.actor in self.followed_domains
        return False

    def match(self, event: StreamEvent) -> tuple[NotificationRule, ...]:
        if not event.actor or event.actor == self.local_domain:
            return ()
        if event.actor in self.muted_domains:
            return ()
        return tuple(
            r for r in self.rules if r.enabled and r.event_type == event.type and self._relevant(r, event)
        )
