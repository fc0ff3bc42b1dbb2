import logging
import threading

from polis_sync.models import SyncResult
from polis_sync.notify.broadcast import Broadcaster
from polis_sync.scheduler import SyncScheduler


def test_full_subscriber_is_skipped_without_blocking() -> None:
    b = Broadcaster(default_maxsize=1)
    slow = b.subscribe()
    fast = b.subscribe(maxsize=4)

    assert b.publish({"event": "counts", "data": {"n": 1}}) == 2
    assert b.publish({"event": "counts", "data": {"n": 2}}) == 1

    assert slow.get_nowait()["data"] == {"n": 1}
    assert slow.empty()
    assert [fast.get_nowait()["data"]["n"] for _ in range(2)] == [1, 2]


def test_unsubscribe_stops_delivery() -> None:
    b = Broadcaster()
    q = b.subscribe()
    assert b.subscriber_count() == 1
    b.unsubscribe(q)
    b.unsubscribe(q)
    assert b.subscriber_count() == 0
    assert b.publish({"event": "counts"}) == 0
    assert q.empty()


class FlakyRunner:
    """第一次周期抛异常，之后正常返回。"""

    def __init__(self, wanted: int) -> None:
        self.calls = 0
        self.wanted = wanted
        self.done = threading.Event()

    def run_once(self) -> SyncResult:
        self.calls += 1
        if self.calls >= self.wanted:
            self.done.set()
        if self.calls == 1:
            raise RuntimeError("boom")
        return SyncResult(started_at=None, events_fetched=self.calls)


def test_crashed_cycle_is_logged_and_counted(caplog) -> None:  # noqa: ANN001
    scheduler = SyncScheduler(FlakyRunner(wanted=1), interval_seconds=60)
    caplog.set_level(logging.ERROR)

    assert scheduler.run_cycle() is None
    assert scheduler.crashes == 1
    assert "cycle crashed: id=1" in caplog.text

    result = scheduler.run_cycle()
    assert result is not None
    assert scheduler.last_result is result
    assert scheduler.cycles == 2


def test_loop_survives_crash_and_stops() -> None:
    runner = FlakyRunner(wanted=2)
    scheduler = SyncScheduler(runner, interval_seconds=1)
    scheduler.start()
    try:
        assert runner.done.wait(10)
        assert scheduler.is_running()
    finally:
        scheduler.stop(timeout=10)

    assert not scheduler.is_running()
    assert scheduler.crashes == 1
    assert scheduler.cycles >= 2


def test_interval_has_a_floor() -> None:
    assert SyncScheduler(FlakyRunner(wanted=1), interval_seconds=0).interval_seconds == 1.0
