from __future__ import annotations

import json
import logging
import urllib.error
from dataclasses import dataclass
from typing import Mapping

from ..http_utils import TRANSPORT_ERRORS, HttpClient, with_query_params
from ..models import PayloadError, StreamEvent, format_timestamp, utc_now
from .base import DiscoveryError, Signer, StreamQueryResult


logger = logging.getLogger(__name__)


def make_query_auth_canonical_json(domain: str, timestamp: str) -> bytes:
    # 字段顺序固定：action, domain, timestamp（服务端按同样顺序重建后验签）
    return json.dumps(
        {"action": "query", "domain": domain, "timestamp": timestamp},
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


@dataclass(slots=True)
class DiscoveryClient:
    """
    Discovery service 的 stream 查询客户端（GET /ds-stream）。

    - api_key 以 Bearer 方式发送
    - 配置了 domain 与 signer 时为“认证查询”：附带 X-Polis-Domain/Signature/Timestamp
    """

    base_url: str
    api_key: str
    http: HttpClient
    domain: str | None = None
    signer: Signer | None = None

    def _headers(self) -> Mapping[str, str]:
        headers: dict[str, str] = {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        if self.domain and self.signer is not None:
            timestamp = format_timestamp(utc_now())
            signature = self.signer.sign(make_query_auth_canonical_json(self.domain, timestamp))
            headers["X-Polis-Domain"] = self.domain
            headers["X-Polis-Signature"] = signature.replace("\n", "")
            headers["X-Polis-Timestamp"] = timestamp
        return headers

    def stream_query(
        self,
        cursor: str,
        limit: int,
        *,
        type_filter: str | None = None,
        actor_filter: str | None = None,
        target_filter: str | None = None,
        source_filter: str | None = None,
    ) -> StreamQueryResult:
        url = with_query_params(
            self.base_url.rstrip("/") + "/ds-stream",
            {
                "since": cursor or None,
                "limit": str(limit) if limit > 0 else None,
                "type": type_filter,
                "actor": actor_filter,
                "target": target_filter,
                "source": source_filter,
            },
        )

        try:
            resp = self.http.get(url, headers=self._headers())
            data = resp.json()
        except urllib.error.HTTPError as e:
            raise DiscoveryError(f"stream query failed with status {e.code}: {url}") from e
        except TRANSPORT_ERRORS as e:
            raise DiscoveryError(f"stream query request failed: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise DiscoveryError(f"stream query returned invalid JSON: {url}") from e

        if not isinstance(data, dict):
            raise DiscoveryError(f"stream query expected object, got {type(data).__name__}")

        raw_events = data.get("events") or []
        if not isinstance(raw_events, list):
            raise DiscoveryError(f"stream query 'events' expected list, got {type(raw_events).__name__}")

        events: list[StreamEvent] = []
        for raw in raw_events:
            try:
                events.append(StreamEvent.from_json(raw))
            except PayloadError as e:
                logger.warning("skipping malformed stream event: error=%s", e)

        result_cursor = data.get("cursor")
        return StreamQueryResult(
            events=events,
            cursor=str(result_cursor) if result_cursor not in (None, "") else "",
            has_more=bool(data.get("has_more", False)),
        )
