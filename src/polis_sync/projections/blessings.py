from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from ..models import (
    BLESSING_DENIED,
    BLESSING_GRANTED,
    BLESSING_REVOKED,
    HandlerResult,
    PayloadError,
    StreamEvent,
    format_timestamp,
    utc_now,
)
from ..remote import ContentFetcher, FetchError
from ..site.blessed import add_blessed_comment
from ..state.store import StateStore
from ..urls import extract_comment_rel_path, extract_post_path, normalize_to_md


logger = logging.getLogger(__name__)

STATE_NAME = "polis.blessing"

STATUS_PENDING = "pending"
STATUS_GRANTED = "granted"
STATUS_DENIED = "denied"
STATUS_REVOKED = "revoked"

_STATUS_BY_EVENT = {
    BLESSING_GRANTED: STATUS_GRANTED,
    BLESSING_DENIED: STATUS_DENIED,
    BLESSING_REVOKED: STATUS_REVOKED,
}

_TRANSITIONS = {
    STATUS_PENDING: (STATUS_GRANTED, STATUS_DENIED),
    STATUS_GRANTED: (STATUS_REVOKED,),
    STATUS_DENIED: (STATUS_REVOKED,),
    STATUS_REVOKED: (),
}

# 旧版事件字段名兼容：按顺序取第一个非空值
COMMENT_URL_KEYS = ("comment_url", "source_url")
POST_URL_KEYS = ("in_reply_to", "target_url")


def can_transition(current: str, new: str) -> bool:
    return new in _TRANSITIONS.get(current, ())


@dataclass(slots=True)
class BlessingEntry:
    source_url: str
    target_url: str
    status: str
    actor: str = ""
    source_domain: str = ""
    target_domain: str = ""
    event_id: str = ""
    created_at: str = ""
    updated_at: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_url, self.target_url)

    @classmethod
    def from_json(cls, obj: dict[str, Any]) -> "BlessingEntry":
        return cls(
            source_url=str(obj.get("source_url") or ""),
            target_url=str(obj.get("target_url") or ""),
            status=str(obj.get("status") or STATUS_PENDING),
            actor=str(obj.get("actor") or ""),
            source_domain=str(obj.get("source_domain") or ""),
            target_domain=str(obj.get("target_domain") or ""),
            event_id=str(obj.get("event_id") or ""),
            created_at=str(obj.get("created_at") or ""),
            updated_at=str(obj.get("updated_at") or ""),
        )

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "source_url": self.source_url,
            "target_url": self.target_url,
            "status": self.status,
            "actor": self.actor,
            "source_domain": self.source_domain,
            "target_domain": self.target_domain,
            "event_id": self.event_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class BlessingState:
    entries: dict[tuple[str, str], BlessingEntry]

    @classmethod
    def load(cls, store: StateStore) -> "BlessingState":
        raw = store.load_state(STATE_NAME) or {}
        entries: dict[tuple[str, str], BlessingEntry] = {}
        for obj in raw.get("blessings") or ():
            if isinstance(obj, dict):
                entry = BlessingEntry.from_json(obj)
                entries[entry.key] = entry
        return cls(entries=entries)

    def counts(self) -> dict[str, int]:
        out = {STATUS_GRANTED: 0, STATUS_DENIED: 0, STATUS_REVOKED: 0}
        for e in self.entries.values():
            if e.status in out:
                out[e.status] += 1
        return out

    def save(self, store: StateStore) -> None:
        state: dict[str, Any] = {"blessings": [e.to_json_dict() for e in self.entries.values()]}
        state.update(self.counts())
        store.save_state(STATE_NAME, state)

    def apply(self, entry: BlessingEntry) -> bool:
        """
        按状态机合并一条记录，返回是否有改动。

        - 本地没有记录：直接记下（pending 可能是在别的节点上创建的）
        - 同状态重放：只刷新 updated_at
        - 非法迁移（例如 revoked -> granted）：忽略
        """
        current = self.entries.get(entry.key)
        if current is None:
            self.entries[entry.key] = entry
            return True
        if current.status == entry.status:
            current.updated_at = entry.updated_at
            return True
        if not can_transition(current.status, entry.status):
            logger.debug(
                "ignoring blessing transition: source_url=%s from=%s to=%s",
                entry.source_url,
                current.status,
                entry.status,
            )
            return False
        current.status = entry.status
        current.event_id = entry.event_id or current.event_id
        current.updated_at = entry.updated_at
        return True


def record_pending(
    store: StateStore,
    *,
    source_url: str,
    target_url: str,
    actor: str = "",
    source_domain: str = "",
    target_domain: str = "",
) -> bool:
    """HTTP 层收到 blessing 请求时登记 pending；已有记录（任何状态）时不做改动。"""
    state = BlessingState.load(store)
    if (source_url, target_url) in state.entries:
        return False
    now = format_timestamp(utc_now())
    state.entries[(source_url, target_url)] = BlessingEntry(
        source_url=source_url,
        target_url=target_url,
        status=STATUS_PENDING,
        actor=actor,
        source_domain=source_domain,
        target_domain=target_domain,
        created_at=now,
        updated_at=now,
    )
    state.save(store)
    return True


@dataclass(slots=True)
class BlessingProjector:
    """
    评论 blessing 状态机 + fetch-on-grant。

    当本站文章下的评论被 grant 时，把评论 markdown 从评论者站点拉取到本地，
    并登记到 metadata/blessed-comments.json。本地文件已存在时不再发起请求。
    """

    store: StateStore
    local_domain: str
    data_dir: str
    fetcher: ContentFetcher

    def name(self) -> str:
        return "blessings"

    def event_types(self) -> tuple[str, ...]:
        return (BLESSING_GRANTED, BLESSING_DENIED, BLESSING_REVOKED)

    def process(self, events: list[StreamEvent]) -> HandlerResult:
        state = BlessingState.load(self.store)
        changed = False
        files_changed = False
        new_items = 0

        for event in events:
            status = _STATUS_BY_EVENT.get(event.type)
            if status is None:
                continue
            try:
                comment_url = event.require_first(*COMMENT_URL_KEYS)
                post_url = event.require_first(*POST_URL_KEYS)
                target_domain = event.get_str("target_domain")
                source_domain = event.get_str("source_domain")
            except PayloadError as e:
                logger.warning("skipping blessing event: event_id=%s error=%s", event.id, e)
                continue

            ts = event.timestamp or format_timestamp(utc_now())
            is_new = (comment_url, post_url) not in state.entries
            if state.apply(
                BlessingEntry(
                    source_url=comment_url,
                    target_url=post_url,
                    status=status,
                    actor=event.actor,
                    source_domain=source_domain,
                    target_domain=target_domain,
                    event_id=event.id,
                    created_at=ts,
                    updated_at=ts,
                )
            ):
                changed = True
                if is_new:
                    new_items += 1

            if status == STATUS_GRANTED and self.local_domain and target_domain == self.local_domain:
                if self._fetch_on_grant(comment_url, post_url):
                    files_changed = True

        if changed:
            state.save(self.store)
        return HandlerResult(new_items=new_items, files_changed=files_changed)

    def _fetch_on_grant(self, comment_url: str, post_url: str) -> bool:
        rel_path = extract_comment_rel_path(comment_url)
        if not rel_path:
            logger.warning("cannot derive local path for blessed comment: comment_url=%s", comment_url)
            return False

        local_path = os.path.join(self.data_dir, rel_path)
        if os.path.exists(local_path):
            return False

        md_url = normalize_to_md(comment_url)
        try:
            content = self.fetcher.fetch_content(md_url)
        except FetchError as e:
            logger.warning("failed to fetch blessed comment: url=%s error=%s", md_url, e)
            return False

        try:
            _write_atomic(local_path, content)
        except OSError as e:
            logger.warning("failed to write blessed comment: path=%s error=%s", rel_path, e)
            return False
        logger.info("fetched blessed comment: url=%s path=%s", md_url, rel_path)

        try:
            add_blessed_comment(self.data_dir, extract_post_path(post_url), comment_url)
        except (OSError, ValueError) as e:
            logger.warning("failed to update blessed comments index: url=%s error=%s", comment_url, e)
        return True


def _write_atomic(path: str, content: str) -> None:
    # 写完整后再 rename；半截文件会被 "已存在则跳过" 当成已完成
    os.makedirs(os.path.dirname(path), exist_ok=True)
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        f.write(content)
    try:
        os.replace(tmp_path, path)
    except OSError:
        os.remove(tmp_path)
        raise
