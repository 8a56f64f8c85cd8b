"""Tests for throttled progress reporting and the work queue."""

from __future__ import annotations

import threading
from pathlib import Path

from fileferry.client.progress import ProgressReporter, ProgressSnapshot
from fileferry.client.work import WorkQueue, WorkState
from fileferry.manifest import ManifestEntry


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_reports_are_throttled_to_the_interval():
    clock = FakeClock()
    seen = []
    reporter = ProgressReporter(3, seen.append, interval=1.0, clock=clock)

    reporter.add_bytes(10)
    reporter.add_bytes(10)
    reporter.add_bytes(10)
    clock.now = 1.5
    reporter.complete_one()
    clock.now = 1.7
    reporter.complete_one()

    assert [snapshot.cumulative_bytes for snapshot in seen] == [10, 30]
    assert seen[-1].completed_count == 1


def test_finish_always_reports_final_totals():
    clock = FakeClock()
    seen = []
    reporter = ProgressReporter(2, seen.append, interval=10.0, clock=clock)
    reporter.add_bytes(100)
    clock.now = 2.0
    reporter.add_bytes(100)
    reporter.complete_one()
    reporter.complete_one()

    final = reporter.finish()

    assert seen[-1] == final
    assert final == ProgressSnapshot(
        completed_count=2, total_count=2, cumulative_bytes=200, elapsed_time=2.0
    )
    assert final.bytes_per_second == 100.0
    assert final.fraction == 1.0
    assert reporter.reports == 2


def test_callback_errors_do_not_propagate():
    def broken(snapshot):
        raise RuntimeError("ui went away")

    reporter = ProgressReporter(1, broken, interval=0)
    reporter.add_bytes(1)

    assert reporter.finish().cumulative_bytes == 1


def test_counters_are_consistent_under_concurrency():
    reporter = ProgressReporter(800, interval=0.0)

    def worker() -> None:
        for _ in range(100):
            reporter.add_bytes(3)
            reporter.complete_one()

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    snapshot = reporter.snapshot()
    assert snapshot.cumulative_bytes == 2400
    assert snapshot.completed_count == 800


def test_zero_elapsed_reports_zero_rate():
    snapshot = ProgressSnapshot(0, 0, 0, 0.0)

    assert snapshot.bytes_per_second == 0.0
    assert snapshot.fraction == 1.0


def test_work_queue_indexes_items_in_submission_order(tmp_path: Path):
    work = WorkQueue()
    first = work.submit(ManifestEntry("a.txt", "0" * 32), tmp_path / "a.txt")
    second = work.submit(ManifestEntry("b.txt", "1" * 32), tmp_path / "b.txt", reason="changed")

    assert (first.index, second.index) == (0, 1)
    assert work.item(1) is second
    assert second.state is WorkState.PENDING
    assert len(work) == 2
    assert not work.drained


def test_work_queue_drains_after_requeue(tmp_path: Path):
    work = WorkQueue()
    work.submit(ManifestEntry("a.txt", "0" * 32), tmp_path / "a.txt")

    index = work.get(timeout=1)
    work.requeue(index)
    work.task_done()
    assert not work.drained

    assert work.get(timeout=1) == index
    work.task_done()
    assert work.drained
    assert work.wait_drained(threading.Event(), poll=0.01)


def test_wait_drained_returns_false_on_cancel(tmp_path: Path):
    work = WorkQueue()
    work.submit(ManifestEntry("a.txt", "0" * 32), tmp_path / "a.txt")
    cancel = threading.Event()
    cancel.set()

    assert not work.wait_drained(cancel, poll=0.01)
