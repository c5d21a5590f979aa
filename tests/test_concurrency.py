import threading
import time

import pytest

from ledger_recon.utils.concurrency import p_map, p_map_skip
from ledger_recon.utils.exceptions import ReconciliationCancelled


def test_preserves_input_order():
    def slow_square(n):
        time.sleep(0.01 * (5 - n))
        return n * n

    assert p_map(range(5), slow_square, concurrency=3) == [0, 1, 4, 9, 16]


def test_respects_concurrency_limit():
    lock = threading.Lock()
    running = 0
    peak = 0

    def work(n):
        nonlocal running, peak
        with lock:
            running += 1
            peak = max(peak, running)
        time.sleep(0.01)
        with lock:
            running -= 1
        return n

    p_map(range(10), work, concurrency=2)
    assert peak <= 2


def test_skip_sentinel_drops_items():
    result = p_map(range(6), lambda n: p_map_skip if n % 2 else n, concurrency=2)
    assert result == [0, 2, 4]


def test_fail_fast_raises_first_error():
    def boom(n):
        if n == 2:
            raise ValueError("bad item")
        return n

    with pytest.raises(ValueError, match="bad item"):
        p_map(range(4), boom, concurrency=1)


def test_collects_errors_when_not_stopping():
    def boom(n):
        if n % 2:
            raise ValueError(f"odd {n}")
        return n

    with pytest.raises(ExceptionGroup) as exc:
        p_map(range(5), boom, concurrency=2, stop_on_error=False)

    assert sorted(str(e) for e in exc.value.exceptions) == ["odd 1", "odd 3"]


def test_cancel_event_stops_the_batch():
    cancel = threading.Event()
    started = []

    def work(n):
        started.append(n)
        if n == 1:
            cancel.set()
        time.sleep(0.02)
        return n

    with pytest.raises(ReconciliationCancelled):
        p_map(range(50), work, concurrency=2, cancel_event=cancel)

    assert len(started) < 50


def test_rejects_bad_concurrency():
    with pytest.raises(ValueError):
        p_map([1], lambda n: n, concurrency=0)
