from __future__ import annotations

import json
import os
from typing import Any

from ..models import format_timestamp, utc_now


BLESSED_COMMENTS_FILENAME = "blessed-comments.json"
GENERATOR = "polis-sync/0"


def blessed_comments_path(data_dir: str) -> str:
    return os.path.join(data_dir, "metadata", BLESSED_COMMENTS_FILENAME)


def load_blessed_comments(data_dir: str) -> dict[str, Any]:
    """
    读取公开的 blessed 评论索引：
    {"version": ..., "comments": [{"post": ..., "blessed": [{"url", "version", "blessed_at"}]}]}
    """
    path = blessed_comments_path(data_dir)
    try:
        with open(path, "rb") as f:
            raw = json.loads(f.read().decode("utf-8"))
    except FileNotFoundError:
        return {"version": GENERATOR, "comments": []}
    if not isinstance(raw, dict):
        raise ValueError(f"Expected object in {path}, got {type(raw).__name__}")
    if not isinstance(raw.get("comments"), list):
        raw["comments"] = []
    return raw


def save_blessed_comments(data_dir: str, index: dict[str, Any]) -> None:
    # 先写临时文件再 rename，读者不会看到写了一半的 JSON
    path = blessed_comments_path(data_dir)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(index, f, ensure_ascii=False, indent=2)
    try:
        os.replace(tmp_path, path)
    except OSError:
        os.remove(tmp_path)
        raise


def add_blessed_comment(data_dir: str, post_path: str, url: str, version: str = "") -> bool:
    """
    把评论加入对应文章的 blessed 列表（读-改-写）。

    同一 url 已存在时不做改动并返回 False。
    """
    index = load_blessed_comments(data_dir)
    comments: list[Any] = index["comments"]

    group: dict[str, Any] | None = None
    for c in comments:
        if isinstance(c, dict) and c.get("post") == post_path:
            group = c
            break
    if group is None:
        group = {"post": post_path, "blessed": []}
        comments.append(group)

    blessed = group.setdefault("blessed", [])
    if any(isinstance(b, dict) and b.get("url") == url for b in blessed):
        return False

    blessed.append({"url": url, "version": version, "blessed_at": format_timestamp(utc_now())})
    save_blessed_comments(data_dir, index)
    return True


def is_blessed_comment(data_dir: str, url: str) -> bool:
    index = load_blessed_comments(data_dir)
    for c in index["comments"]:
        if not isinstance(c, dict):
            continue
        for b in c.get("blessed") or ():
            if isinstance(b, dict) and b.get("url") == url:
                return True
    return False
