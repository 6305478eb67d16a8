import logging
import threading

import pytest

from fakes import FakeClock
from qagen.lock import SingleFlightLock


def test_acquire_when_free_and_reject_when_held():
    clock = FakeClock()
    lock = SingleFlightLock(60, clock=clock)

    assert lock.try_acquire("workHours") is True
    assert lock.try_acquire("offHours") is False

    status = lock.status()
    assert status.holder == "workHours"
    assert status.acquired_at == clock.now


def test_same_owner_cannot_reenter():
    lock = SingleFlightLock(60, clock=FakeClock())
    assert lock.try_acquire("manual") is True
    assert lock.try_acquire("manual") is False


def test_hold_exactly_at_limit_is_not_stale():
    clock = FakeClock()
    lock = SingleFlightLock(60, clock=clock)
    lock.try_acquire("workHours")
    clock.advance(60)
    assert lock.try_acquire("offHours") is False
    assert lock.status().holder == "workHours"


def test_stale_holder_is_overridden(caplog):
    clock = FakeClock()
    lock = SingleFlightLock(3600, clock=clock)
    lock.try_acquire("workHours")
    clock.advance(3600.001)

    with caplog.at_level(logging.WARNING, logger="qagen.lock"):
        assert lock.try_acquire("offHours") is True

    status = lock.status()
    assert status.holder == "offHours"
    assert status.acquired_at == clock.now
    messages = [record.getMessage() for record in caplog.records]
    assert any(
        "event=lock_forced_unlock" in message
        and "previous_holder=workHours" in message
        and "new_holder=offHours" in message
        for message in messages
    )


def test_release_clears_state():
    lock = SingleFlightLock(60, clock=FakeClock())
    lock.try_acquire("manual")
    lock.release("manual")

    status = lock.status()
    assert status.holder is None
    assert status.acquired_at is None
    assert status.elapsed_seconds is None
    assert lock.try_acquire("offHours") is True


def test_release_by_overridden_owner_logs_mismatch(caplog):
    clock = FakeClock()
    lock = SingleFlightLock(10, clock=clock)
    lock.try_acquire("workHours")
    clock.advance(11)
    lock.try_acquire("offHours")

    with caplog.at_level(logging.WARNING, logger="qagen.lock"):
        lock.release("workHours")

    assert lock.is_held() is False
    assert any("event=lock_release_mismatch" in r.getMessage() for r in caplog.records)


def test_status_reports_elapsed():
    clock = FakeClock()
    lock = SingleFlightLock(60, clock=clock)
    lock.try_acquire("workHours")
    clock.advance(12.5)
    assert lock.status().elapsed_seconds == pytest.approx(12.5)


def test_rejects_non_positive_max_hold():
    with pytest.raises(ValueError):
        SingleFlightLock(0)


def test_only_one_thread_acquires():
    lock = SingleFlightLock(3600)
    barrier = threading.Barrier(16)
    results = []
    results_lock = threading.Lock()

    def contend(index):
        barrier.wait()
        acquired = lock.try_acquire(f"owner-{index}")
        with results_lock:
            results.append(acquired)

    threads = [threading.Thread(target=contend, args=(i,)) for i in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1
