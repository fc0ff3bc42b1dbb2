from __future__ import annotations

import urllib.error
from dataclasses import dataclass
from typing import Protocol

from .http_utils import TRANSPORT_ERRORS, HttpClient


class FetchError(RuntimeError):
    """远端站点内容抓取失败。"""


class ContentFetcher(Protocol):
    def fetch_content(self, url: str) -> str: ...


@dataclass(slots=True)
class RemoteClient:
    """从评论作者的站点抓取原始 markdown。"""

    http: HttpClient

    def fetch_content(self, url: str) -> str:
        try:
            resp = self.http.get(url, headers={"Accept": "text/markdown, text/plain;q=0.9, */*;q=0.1"})
        except urllib.error.HTTPError as e:
            raise FetchError(f"fetch failed with status {e.code} for {url}") from e
        except TRANSPORT_ERRORS as e:
            raise FetchError(f"failed to fetch {url}: {type(e).__name__}: {e}") from e
        if resp.status >= 400:
            raise FetchError(f"fetch failed with status {resp.status} for {url}")
        return resp.text()
