from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..models import FOLLOW_ANNOUNCED, FOLLOW_REMOVED, HandlerResult, PayloadError, StreamEvent, format_timestamp, utc_now
from ..state.store import StateStore


logger = logging.getLogger(__name__)

STATE_NAME = "polis.follow"


def load_followers(store: StateStore) -> dict[str, dict[str, Any]]:
    raw = store.load_state(STATE_NAME) or {}
    followers = raw.get("followers")
    if not isinstance(followers, dict):
        return {}
    return {k: v for k, v in followers.items() if isinstance(v, dict)}


@dataclass(slots=True)
class FollowerProjector:
    """维护关注本站的 actor 列表；只有数量变化才算 changed。"""

    store: StateStore
    local_domain: str

    def name(self) -> str:
        return "followers"

    def event_types(self) -> tuple[str, ...]:
        return (FOLLOW_ANNOUNCED, FOLLOW_REMOVED)

    def process(self, events: list[StreamEvent]) -> HandlerResult:
        if not self.local_domain:
            return HandlerResult()

        followers = load_followers(self.store)
        before = len(followers)
        touched = False

        for event in events:
            try:
                target_domain = event.get_str("target_domain")
            except PayloadError as e:
                logger.warning("skipping follow event: event_id=%s error=%s", event.id, e)
                continue
            if target_domain != self.local_domain or not event.actor:
                continue

            if event.type == FOLLOW_ANNOUNCED:
                followers[event.actor] = {
                    "actor": event.actor,
                    "followed_at": event.timestamp or format_timestamp(utc_now()),
                    "event_id": event.id,
                }
                touched = True
            elif event.type == FOLLOW_REMOVED and event.actor in followers:
                del followers[event.actor]
                touched = True

        if touched:
            self.store.save_state(STATE_NAME, {"followers": followers, "count": len(followers)})

        changed = len(followers) != before
        if changed:
            logger.info("followers changed: before=%d after=%d", before, len(followers))
        return HandlerResult(new_items=max(0, len(followers) - before), files_changed=changed)


def follower_count(store: StateStore) -> int:
    return len(load_followers(store))
