from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Mapping


logger = logging.getLogger(__name__)


class Broadcaster:
    """
    非阻塞的多订阅者广播。

    每个订阅者一个有界队列；publish 时对已满的队列直接跳过（本次更新丢弃），
    同步周期永远不会因为某个慢订阅者而阻塞。
    """

    def __init__(self, *, default_maxsize: int = 16) -> None:
        self._default_maxsize = default_maxsize
        self._lock = threading.Lock()
        self._subscribers: list[queue.Queue] = []

    def subscribe(self, maxsize: int | None = None) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=maxsize if maxsize is not None else self._default_maxsize)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, payload: Mapping[str, Any]) -> int:
        with self._lock:
            targets = list(self._subscribers)
        delivered = 0
        for q in targets:
            try:
                q.put_nowait(dict(payload))
                delivered += 1
            except queue.Full:
                logger.debug("subscriber queue full, dropping update: qsize=%d", q.qsize())
        return delivered
