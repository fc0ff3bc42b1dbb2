from __future__ import annotations

import posixpath
import urllib.parse


def extract_domain(raw_url: str) -> str:
    """
    从 URL 提取 host（不含端口）。

    例："https://alice.polis.pub/posts/..." -> "alice.polis.pub"
    """
    raw_url = (raw_url or "").strip()
    if not raw_url:
        return ""
    if "://" not in raw_url:
        raw_url = "https://" + raw_url
    try:
        return urllib.parse.urlparse(raw_url).hostname or ""
    except ValueError:
        return ""


def normalize_to_md(raw_url: str) -> str:
    """站点内容统一以 .md 存储，把 .html 链接换成 .md。"""
    if not raw_url:
        return raw_url
    try:
        parsed = urllib.parse.urlparse(raw_url)
    except ValueError:
        if raw_url.endswith(".html"):
            return raw_url[: -len(".html")] + ".md"
        return raw_url
    if parsed.path.endswith(".html"):
        parsed = parsed._replace(path=parsed.path[: -len(".html")] + ".md")
    return urllib.parse.urlunparse(parsed)


def extract_post_path(url: str) -> str:
    """"https://alice.polis.pub/posts/20260127/hello.md" -> "posts/20260127/hello.md"。"""
    idx = url.find("/posts/")
    if idx >= 0:
        return url[idx + 1 :]
    return url


def extract_comment_rel_path(comment_url: str) -> str:
    """
    从评论 URL 推导本地相对存储路径，如 "comments/20260222/id.md"。

    无法推导（不含 /comments/，或包含 .. 等越界片段）时返回空串。
    """
    try:
        path = urllib.parse.urlparse(normalize_to_md(comment_url)).path
    except ValueError:
        return ""
    idx = path.find("/comments/")
    if idx < 0:
        return ""
    rel = path[idx + 1 :]
    parts = rel.split("/")
    if any(p in ("", ".", "..") for p in parts) or len(parts) < 2:
        return ""
    if not rel.endswith(".md"):
        rel += ".md"
    return posixpath.normpath(rel)


def join_domains(domains: list[str] | tuple[str, ...]) -> str:
    return ",".join(d for d in domains if d)
