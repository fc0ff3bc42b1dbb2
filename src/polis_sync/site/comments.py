from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime

from ..models import utc_now


STATUS_PENDING = "pending"
STATUS_BLESSED = "blessed"
STATUS_DENIED = "denied"

_FRONTMATTER_RE = re.compile(r"^---\n(.*?)\n---", re.DOTALL)


def parse_frontmatter(content: str) -> dict[str, str]:
    """只解析顶层的 "key: value" 行；缩进的嵌套项忽略。"""
    result: dict[str, str] = {}
    content = content.strip()
    m = _FRONTMATTER_RE.match(content)
    if not m:
        return result
    for line in m.group(1).split("\n"):
        if line.startswith((" ", "\t")):
            continue
        key, sep, value = line.partition(":")
        if sep:
            result[key.strip()] = value.strip()
    return result


def _date_dir(frontmatter: dict[str, str]) -> str:
    ts = utc_now()
    for key in ("published", "timestamp"):
        raw = frontmatter.get(key) or ""
        if not raw:
            continue
        try:
            ts = datetime.strptime(raw, "%Y-%m-%dT%H:%M:%SZ").replace(tzinfo=UTC)
        except ValueError:
            pass
        break
    return ts.strftime("%Y%m%d")


@dataclass(frozen=True, slots=True)
class PendingComment:
    id: str
    path: str
    frontmatter: dict[str, str] = field(default_factory=dict)

    def comment_url(self, base_url: str = "") -> str:
        """优先使用 frontmatter 中的 comment_url，缺失时按 base_url + 日期目录 + id 重建。"""
        url = self.frontmatter.get("comment_url") or ""
        if url or not base_url:
            return url
        return f"{base_url.rstrip('/')}/comments/{_date_dir(self.frontmatter)}/{self.id}.md"


@dataclass(slots=True)
class CommentBuckets:
    """
    本站自己写的评论草稿按状态分桶存放：
    - pending / denied：.polis/comments/<status>/<id>.md
    - blessed：comments/<YYYYMMDD>/<id>.md（公开目录）
    """

    data_dir: str

    def bucket_dir(self, status: str) -> str:
        return os.path.join(self.data_dir, ".polis", "comments", status)

    def list_pending(self) -> list[PendingComment]:
        pending_dir = self.bucket_dir(STATUS_PENDING)
        try:
            names = sorted(os.listdir(pending_dir))
        except FileNotFoundError:
            return []
        out: list[PendingComment] = []
        for name in names:
            path = os.path.join(pending_dir, name)
            if not name.endswith(".md") or not os.path.isfile(path):
                continue
            with open(path, encoding="utf-8") as f:
                fm = parse_frontmatter(f.read())
            out.append(PendingComment(id=name[: -len(".md")], path=path, frontmatter=fm))
        return out

    def move(self, comment_id: str, to_status: str, *, from_status: str = STATUS_PENDING) -> str:
        """把评论移动到目标分桶，返回相对 data_dir 的新路径。"""
        from_path = os.path.join(self.bucket_dir(from_status), comment_id + ".md")
        with open(from_path, encoding="utf-8") as f:
            content = f.read()

        if to_status == STATUS_BLESSED:
            rel_path = os.path.join("comments", _date_dir(parse_frontmatter(content)), comment_id + ".md")
        else:
            rel_path = os.path.join(".polis", "comments", to_status, comment_id + ".md")

        to_path = os.path.join(self.data_dir, rel_path)
        os.makedirs(os.path.dirname(to_path), exist_ok=True)
        with open(to_path, "w", encoding="utf-8") as f:
            f.write(content)
        os.remove(from_path)
        return rel_path
