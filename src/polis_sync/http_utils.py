from __future__ import annotations

import http.client
import json
import random
import ssl
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Mapping


RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})

# 网络层可能抛出的全部传输错误；HTTPException（如 IncompleteRead）不是 OSError 的子类
TRANSPORT_ERRORS = (urllib.error.URLError, http.client.HTTPException, TimeoutError, OSError)


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int
    url: str
    headers: Mapping[str, str]
    body: bytes

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding, errors="replace")

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))


class HttpClient:
    """
    同步周期用的 GET 客户端。

    - DS 查询：少量退避重试（429/5xx、连接错误、响应被截断）
    - 远端评论抓取：调用方传 max_retries=0，失败留给下一个周期
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 8.0,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        user_agent: str = "polis-sync/0",
        verify_ssl: bool = True,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._max_retries = max(0, max_retries)
        self._backoff_seconds = backoff_seconds
        self._default_headers = {"User-Agent": user_agent}
        self._ssl_context = ssl.create_default_context() if verify_ssl else ssl._create_unverified_context()

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def _fetch(self, url: str, headers: Mapping[str, str]) -> HttpResponse:
        req = urllib.request.Request(url=url, headers=dict(headers), method="GET")
        with urllib.request.urlopen(req, timeout=self._timeout_seconds, context=self._ssl_context) as resp:
            body = resp.read()
            return HttpResponse(
                status=getattr(resp, "status", 200),
                url=resp.geturl(),
                headers=dict(resp.headers.items()),
                body=body,
            )

    def _sleep_before_retry(self, attempt: int) -> None:
        delay = self._backoff_seconds * (2**attempt)
        time.sleep(delay + random.random() * 0.25 * delay)

    def get(self, url: str, *, headers: Mapping[str, str] | None = None) -> HttpResponse:
        merged = {**self._default_headers, **(headers or {})}
        attempt = 0
        while True:
            try:
                return self._fetch(url, merged)
            except urllib.error.HTTPError as e:
                if e.code not in RETRY_STATUSES or attempt >= self._max_retries:
                    raise
            except TRANSPORT_ERRORS:
                if attempt >= self._max_retries:
                    raise
            self._sleep_before_retry(attempt)
            attempt += 1


def with_query_params(url: str, params: Mapping[str, str | None]) -> str:
    """合并查询参数；值为 None 或空串的参数不发送。"""
    parsed = urllib.parse.urlparse(url)
    q = dict(urllib.parse.parse_qsl(parsed.query, keep_blank_values=True))
    q.update({k: v for k, v in params.items() if v})
    return urllib.parse.urlunparse(parsed._replace(query=urllib.parse.urlencode(q)))
