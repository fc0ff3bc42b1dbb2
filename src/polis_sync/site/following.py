from __future__ import annotations

import json
import logging
import os

from ..urls import extract_domain


logger = logging.getLogger(__name__)


def following_path(data_dir: str) -> str:
    return os.path.join(data_dir, "metadata", "following.json")


def load_followed_domains(data_dir: str) -> frozenset[str]:
    """
    读取 metadata/following.json，返回关注站点的域名集合。

    文件不存在视为没有关注任何人；文件损坏时记录 warning 并返回空集合。
    """
    path = following_path(data_dir)
    try:
        with open(path, "rb") as f:
            raw = json.loads(f.read().decode("utf-8"))
    except FileNotFoundError:
        return frozenset()
    except (OSError, ValueError) as e:
        logger.warning("failed to read following list: path=%s error=%s", path, e)
        return frozenset()

    entries = raw.get("following") if isinstance(raw, dict) else None
    if not isinstance(entries, list):
        return frozenset()

    domains: set[str] = set()
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        d = extract_domain(str(entry.get("url") or ""))
        if d:
            domains.add(d)
    return frozenset(domains)
