from __future__ import annotations

from typing import Any

from ..models import SyncResult


def format_counts(result: SyncResult) -> dict[str, Any]:
    """广播给 UI 的负载：{"event": "counts", "data": {...}}。"""
    return {"event": "counts", "data": result.counts()}


def format_sync_summary(result: SyncResult) -> str:
    cursor = f"{result.cursor_before or '-'}->{result.cursor_after or '-'}"
    return (
        f"events={result.events_fetched} cursor={cursor} "
        f"notifications={result.new_notifications} feed={result.new_feed_items} "
        f"followers_changed={result.followers_changed} comments_changed={result.comments_changed} "
        f"rendered={result.rendered} query_errors={result.query_errors} handler_errors={result.handler_errors}"
    )
