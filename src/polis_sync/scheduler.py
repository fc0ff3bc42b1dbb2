from __future__ import annotations

import logging
import threading
import time
from typing import Protocol

from .models import SyncResult


logger = logging.getLogger(__name__)


class _Runnable(Protocol):
    def run_once(self) -> SyncResult: ...


class SyncScheduler:
    """
    单个后台线程按固定间隔执行同步周期，周期之间严格串行。

    - trigger()：请求立即执行一次（多次请求会合并，不阻塞调用方）
    - stop()：结束循环并等待线程退出
    - 单个周期崩溃只记录日志，循环继续
    """

    def __init__(self, runner: _Runnable, interval_seconds: float) -> None:
        self._runner = runner
        self._interval_seconds = max(1.0, float(interval_seconds))
        self._wake = threading.Event()
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.cycles = 0
        self.crashes = 0
        self.last_result: SyncResult | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stopping.clear()
            self._thread = threading.Thread(target=self._loop, name="polis-sync", daemon=True)
            self._thread.start()

    def trigger(self) -> None:
        self._wake.set()

    def stop(self, timeout: float | None = None) -> None:
        self._stopping.set()
        self._wake.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def run_cycle(self) -> SyncResult | None:
        self.cycles += 1
        try:
            result = self._runner.run_once()
        except Exception:  # noqa: BLE001
            self.crashes += 1
            logger.exception("cycle crashed: id=%d", self.cycles)
            return None
        self.last_result = result
        return result

    def _loop(self) -> None:
        while not self._stopping.is_set():
            self._wake.clear()
            start_t = time.monotonic()
            self.run_cycle()
            if self._stopping.is_set():
                break
            remaining = self._interval_seconds - (time.monotonic() - start_t)
            if remaining > 0:
                self._wake.wait(remaining)
