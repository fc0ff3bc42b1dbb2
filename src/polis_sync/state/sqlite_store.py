from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Iterable, Iterator

from ..cursor import cursor_greater, is_unset
from ..models import CachedFeedItem, NotificationEntry, format_timestamp, utc_now
from .store import CursorEntry


def _utc_now_iso() -> str:
    return format_timestamp(utc_now())


@dataclass(slots=True)
class SqliteStateStore:
    """
    默认状态存储：SQLite，所有表按 namespace（discovery service 的域名）隔离。

    表设计：
    - cursors：每个逻辑 stream 的 cursor
    - projection_state：每个 projection 一份 JSON state（engine 只负责读写，不解析）
    - configs：用户可编辑的配置（通知规则、静音列表、feed 上限），重置 state 时保留
    - notifications：通知日志（按 seq 保序，id 去重）
    - feed_items：feed 缓存（按 id upsert）

    所有写入都是幂等合并（upsert / insert-or-ignore / cursor 取最大值），
    前台请求与后台同步交错执行时不会丢数据。
    """

    sqlite_path: str
    namespace: str
    _schema_ready: bool = field(default=False, init=False, repr=False)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.sqlite_path, timeout=10)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        if not self._schema_ready:
            self.ensure_schema()
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS cursors (
                        namespace TEXT NOT NULL,
                        stream TEXT NOT NULL,
                        position TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        PRIMARY KEY (namespace, stream)
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS projection_state (
                        namespace TEXT NOT NULL,
                        name TEXT NOT NULL,
                        state_json TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        PRIMARY KEY (namespace, name)
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS configs (
                        namespace TEXT NOT NULL,
                        name TEXT NOT NULL,
                        config_json TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        PRIMARY KEY (namespace, name)
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS notifications (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        namespace TEXT NOT NULL,
                        id TEXT NOT NULL,
                        rule_id TEXT NOT NULL,
                        actor TEXT NOT NULL,
                        icon TEXT NOT NULL,
                        message TEXT NOT NULL,
                        link TEXT NOT NULL,
                        event_ids_json TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        read_at TEXT,
                        UNIQUE (namespace, id)
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS feed_items (
                        namespace TEXT NOT NULL,
                        id TEXT NOT NULL,
                        type TEXT NOT NULL,
                        title TEXT NOT NULL,
                        url TEXT NOT NULL,
                        published TEXT NOT NULL,
                        hash TEXT NOT NULL,
                        author_url TEXT NOT NULL,
                        author_domain TEXT NOT NULL,
                        target_url TEXT NOT NULL,
                        target_domain TEXT NOT NULL,
                        cached_at TEXT NOT NULL,
                        read_at TEXT,
                        PRIMARY KEY (namespace, id)
                    )
                    """
                )
        finally:
            conn.close()
        self._schema_ready = True

    # --- cursors ---

    def get_cursor(self, stream: str) -> str:
        entry = self.get_cursor_entry(stream)
        if entry is None or not entry.position:
            return "0"
        return entry.position

    def get_cursor_entry(self, stream: str) -> CursorEntry | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT position, updated_at FROM cursors WHERE namespace = ? AND stream = ?",
                (self.namespace, stream),
            ).fetchone()
            if not row:
                return None
            return CursorEntry(position=row["position"], updated_at=row["updated_at"])

    def set_cursor(self, stream: str, token: str) -> None:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO cursors(namespace, stream, position, updated_at)
                VALUES(?, ?, ?, ?)
                ON CONFLICT(namespace, stream) DO UPDATE SET
                    position=excluded.position,
                    updated_at=excluded.updated_at
                """,
                (self.namespace, stream, token, _utc_now_iso()),
            )

    def advance_cursor(self, stream: str, token: str) -> bool:
        """只在 token 比当前值更大时写入（读-比较-写在同一个写事务内完成）。"""
        if is_unset(token):
            return False
        with self._session() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT position FROM cursors WHERE namespace = ? AND stream = ?",
                (self.namespace, stream),
            ).fetchone()
            current = row["position"] if row else None
            if current is not None and not is_unset(current) and not cursor_greater(token, current):
                return False
            conn.execute(
                """
                INSERT INTO cursors(namespace, stream, position, updated_at)
                VALUES(?, ?, ?, ?)
                ON CONFLICT(namespace, stream) DO UPDATE SET
                    position=excluded.position,
                    updated_at=excluded.updated_at
                """,
                (self.namespace, stream, token, _utc_now_iso()),
            )
            return True

    # --- projection state / config ---

    def _load_blob(self, table: str, column: str, name: str) -> dict[str, Any] | None:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT {column} FROM {table} WHERE namespace = ? AND name = ?",  # noqa: S608
                (self.namespace, name),
            ).fetchone()
            if not row:
                return None
            value = json.loads(row[column])
            return value if isinstance(value, dict) else None

    def _save_blob(self, table: str, column: str, name: str, value: dict[str, Any]) -> None:
        with self._session() as conn:
            conn.execute(
                f"""
                INSERT INTO {table}(namespace, name, {column}, updated_at)
                VALUES(?, ?, ?, ?)
                ON CONFLICT(namespace, name) DO UPDATE SET
                    {column}=excluded.{column},
                    updated_at=excluded.updated_at
                """,  # noqa: S608
                (self.namespace, name, json.dumps(value, ensure_ascii=False, sort_keys=True), _utc_now_iso()),
            )

    def load_state(self, name: str) -> dict[str, Any] | None:
        return self._load_blob("projection_state", "state_json", name)

    def save_state(self, name: str, state: dict[str, Any]) -> None:
        self._save_blob("projection_state", "state_json", name, state)

    def load_config(self, name: str) -> dict[str, Any] | None:
        return self._load_blob("configs", "config_json", name)

    def save_config(self, name: str, config: dict[str, Any]) -> None:
        self._save_blob("configs", "config_json", name, config)

    # --- notifications ---

    def append_notifications(self, entries: Iterable[NotificationEntry]) -> int:
        added = 0
        with self._session() as conn:
            for e in entries:
                cur = conn.execute(
                    """
                    INSERT OR IGNORE INTO notifications(
                        namespace, id, rule_id, actor, icon, message, link, event_ids_json, created_at, read_at
                    )
                    VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        self.namespace,
                        e.id,
                        e.rule_id,
                        e.actor,
                        e.icon,
                        e.message,
                        e.link,
                        json.dumps(list(e.event_ids)),
                        e.created_at,
                        e.read_at,
                    ),
                )
                added += cur.rowcount
        return added

    def list_notifications(self) -> list[NotificationEntry]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM notifications WHERE namespace = ? ORDER BY seq ASC",
                (self.namespace,),
            ).fetchall()
        return [
            NotificationEntry(
                id=r["id"],
                rule_id=r["rule_id"],
                actor=r["actor"],
                icon=r["icon"],
                message=r["message"],
                link=r["link"],
                event_ids=tuple(json.loads(r["event_ids_json"])),
                created_at=r["created_at"],
                read_at=r["read_at"],
            )
            for r in rows
        ]

    def mark_notifications_read(self, ids: Iterable[str] | None, read_at: str) -> int:
        with self._session() as conn:
            if ids is None:
                cur = conn.execute(
                    "UPDATE notifications SET read_at = ? WHERE namespace = ? AND read_at IS NULL",
                    (read_at, self.namespace),
                )
                return cur.rowcount
            changed = 0
            for nid in ids:
                cur = conn.execute(
                    "UPDATE notifications SET read_at = ? WHERE namespace = ? AND id = ? AND read_at IS NULL",
                    (read_at, self.namespace, nid),
                )
                changed += cur.rowcount
            return changed

    def unread_notification_count(self) -> int:
        with self._session() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM notifications WHERE namespace = ? AND read_at IS NULL",
                (self.namespace,),
            ).fetchone()
            return int(row[0])

    def prune_notifications(self, *, max_items: int, max_age_days: int) -> int:
        cutoff = format_timestamp(utc_now() - timedelta(days=max_age_days))
        with self._session() as conn:
            removed = conn.execute(
                "DELETE FROM notifications WHERE namespace = ? AND created_at != '' AND created_at < ?",
                (self.namespace, cutoff),
            ).rowcount
            removed += conn.execute(
                """
                DELETE FROM notifications
                WHERE namespace = ? AND seq NOT IN (
                    SELECT seq FROM notifications WHERE namespace = ? ORDER BY seq DESC LIMIT ?
                )
                """,
                (self.namespace, self.namespace, max_items),
            ).rowcount
            return removed

    # --- feed cache ---

    def merge_feed_items(self, items: Iterable[CachedFeedItem]) -> int:
        added = 0
        with self._session() as conn:
            for it in items:
                cur = conn.execute(
                    """
                    INSERT OR IGNORE INTO feed_items(
                        namespace, id, type, title, url, published, hash, author_url, author_domain,
                        target_url, target_domain, cached_at, read_at
                    )
                    VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        self.namespace,
                        it.id,
                        it.type,
                        it.title,
                        it.url,
                        it.published,
                        it.hash,
                        it.author_url,
                        it.author_domain,
                        it.target_url,
                        it.target_domain,
                        it.cached_at,
                        it.read_at,
                    ),
                )
                added += cur.rowcount
        return added

    def list_feed_items(self) -> list[CachedFeedItem]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM feed_items WHERE namespace = ? ORDER BY published DESC, id ASC",
                (self.namespace,),
            ).fetchall()
        return [
            CachedFeedItem(
                id=r["id"],
                type=r["type"],
                title=r["title"],
                url=r["url"],
                published=r["published"],
                hash=r["hash"],
                author_url=r["author_url"],
                author_domain=r["author_domain"],
                target_url=r["target_url"],
                target_domain=r["target_domain"],
                cached_at=r["cached_at"],
                read_at=r["read_at"],
            )
            for r in rows
        ]

    def set_feed_read(self, item_id: str, read_at: str | None) -> bool:
        with self._session() as conn:
            cur = conn.execute(
                "UPDATE feed_items SET read_at = ? WHERE namespace = ? AND id = ?",
                (read_at, self.namespace, item_id),
            )
            return cur.rowcount > 0

    def set_all_feed_read(self, read_at: str) -> int:
        with self._session() as conn:
            cur = conn.execute(
                "UPDATE feed_items SET read_at = ? WHERE namespace = ? AND read_at IS NULL",
                (read_at, self.namespace),
            )
            return cur.rowcount

    def set_feed_unread_from(self, published: str) -> int:
        with self._session() as conn:
            cur = conn.execute(
                "UPDATE feed_items SET read_at = NULL WHERE namespace = ? AND published >= ?",
                (self.namespace, published),
            )
            return cur.rowcount

    def prune_feed(self, *, max_items: int, max_age_days: int) -> int:
        cutoff = format_timestamp(utc_now() - timedelta(days=max_age_days))
        with self._session() as conn:
            removed = conn.execute(
                "DELETE FROM feed_items WHERE namespace = ? AND published != '' AND published < ?",
                (self.namespace, cutoff),
            ).rowcount
            removed += conn.execute(
                """
                DELETE FROM feed_items
                WHERE namespace = ? AND id NOT IN (
                    SELECT id FROM feed_items WHERE namespace = ? ORDER BY published DESC, id ASC LIMIT ?
                )
                """,
                (self.namespace, self.namespace, max_items),
            ).rowcount
            return removed
