from __future__ import annotations

import logging
from dataclasses import dataclass

from ..models import BLESSING_DENIED, BLESSING_GRANTED, HandlerResult, PayloadError, StreamEvent, format_timestamp, utc_now
from ..site.comments import STATUS_BLESSED, STATUS_DENIED, CommentBuckets
from ..site.hooks import EVENT_POST_COMMENT, HookError, HookPayload, commit_message_for, run_hook
from .blessings import COMMENT_URL_KEYS


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CommentStatusProjector:
    """
    本站评论草稿的状态同步：别人对我的评论 grant/deny 后，
    把 .polis/comments/pending 中对应的草稿移到 blessed / denied，并在 blessed 后触发 post-comment hook。
    """

    data_dir: str
    base_url: str
    local_domain: str
    hook_path: str | None = None

    def name(self) -> str:
        return "comment-status"

    def event_types(self) -> tuple[str, ...]:
        return (BLESSING_GRANTED, BLESSING_DENIED)

    def _decisions(self, events: list[StreamEvent]) -> dict[str, str]:
        decisions: dict[str, str] = {}
        for event in events:
            try:
                source_url = event.first_str(*COMMENT_URL_KEYS)
                source_domain = event.get_str("source_domain")
            except PayloadError as e:
                logger.warning("skipping comment status event: event_id=%s error=%s", event.id, e)
                continue
            if not source_url or source_domain != self.local_domain:
                continue
            decisions[source_url] = STATUS_BLESSED if event.type == BLESSING_GRANTED else STATUS_DENIED
        return decisions

    def process(self, events: list[StreamEvent]) -> HandlerResult:
        if not self.local_domain:
            return HandlerResult()
        decisions = self._decisions(events)
        if not decisions:
            return HandlerResult()

        buckets = CommentBuckets(self.data_dir)
        moved = 0
        for comment in buckets.list_pending():
            status = decisions.get(comment.comment_url(self.base_url))
            if status is None:
                continue
            try:
                rel_path = buckets.move(comment.id, status)
            except OSError as e:
                logger.warning("failed to move comment: id=%s to=%s error=%s", comment.id, status, e)
                continue
            moved += 1
            logger.info("comment status updated: id=%s status=%s path=%s", comment.id, status, rel_path)

            if status == STATUS_BLESSED:
                self._run_post_comment_hook(rel_path, comment.frontmatter)

        return HandlerResult(new_items=moved, files_changed=moved > 0)

    def _run_post_comment_hook(self, rel_path: str, frontmatter: dict[str, str]) -> None:
        title = frontmatter.get("in_reply_to", "")
        payload = HookPayload(
            event=EVENT_POST_COMMENT,
            path=rel_path,
            title=title,
            version=frontmatter.get("comment_version", ""),
            timestamp=format_timestamp(utc_now()),
            commit_message=commit_message_for(EVENT_POST_COMMENT, title),
        )
        try:
            run_hook(self.data_dir, self.hook_path, payload)
        except HookError as e:
            logger.warning("post-comment hook failed: path=%s error=%s", rel_path, e)
