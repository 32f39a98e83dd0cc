import threading
import time

import pytest

from proxmon.collector.poller import Collector, CollectorState
from proxmon.errors import ConfigurationError, UpstreamError
from proxmon.models.models import PollTarget
from tests.helpers import FakeProxmoxClient

TARGET = PollTarget(node="pve", vmid="102", interval_seconds=1.0)


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_collect_once_persists_snapshot(fake_client, store):
    metrics = Collector(fake_client, store).collect_once(TARGET)

    assert metrics.status == "running"
    assert metrics.cpu_percent == 25.34
    snapshot = store.latest("pve", "102")
    assert snapshot.cpu_percent == 25.34
    assert snapshot.memory.used == 512
    assert snapshot.memory.max == 2048
    assert snapshot.uptime_seconds == 3600
    assert snapshot.raw["netin"] == 1000.0
    assert snapshot.raw["diskwrite"] == 4000.0
    assert "status" not in snapshot.raw
    assert fake_client.calls == [("pve", "102")]


def test_collect_once_requires_complete_target(fake_client, store):
    with pytest.raises(ConfigurationError):
        Collector(fake_client, store).collect_once(PollTarget(node="pve"))
    assert fake_client.calls == []


def test_collect_once_propagates_upstream_errors(failing_client, store):
    with pytest.raises(UpstreamError) as exc_info:
        Collector(failing_client, store).collect_once(TARGET)
    assert exc_info.value.status == 500
    assert store.latest("pve", "102") is None


def test_start_with_incomplete_target_is_noop(fake_client, store):
    collector = Collector(fake_client, store)
    assert collector.start(PollTarget(vmid="102")) is False
    assert collector.state is CollectorState.STOPPED
    assert fake_client.calls == []


def test_start_rejects_non_positive_interval(fake_client, store):
    collector = Collector(fake_client, store)
    with pytest.raises(ValueError):
        collector.start(TARGET, interval=0)
    assert not collector.is_running


def test_start_is_idempotent(fake_client, store):
    collector = Collector(fake_client, store)
    try:
        assert collector.start(TARGET, interval=60) is True
        assert collector.start(TARGET, interval=60) is False
        assert wait_for(lambda: len(fake_client.calls) >= 1)
        time.sleep(0.2)
        # One schedule, one immediate tick
        assert len(fake_client.calls) == 1
    finally:
        collector.stop()


def test_first_tick_is_immediate_and_schedule_repeats(fake_client, store):
    collector = Collector(fake_client, store)
    collector.start(TARGET)
    try:
        assert wait_for(lambda: len(store.list_snapshots("pve", "102")) >= 1, timeout=0.8)
        assert wait_for(lambda: len(store.list_snapshots("pve", "102")) >= 2, timeout=2.5)
    finally:
        collector.stop()


def test_failing_ticks_do_not_stop_the_schedule(failing_client, store):
    collector = Collector(failing_client, store)
    collector.start(TARGET, interval=0.1)
    try:
        assert wait_for(lambda: len(failing_client.calls) >= 3)
        assert collector.is_running
    finally:
        collector.stop()
    assert store.latest("pve", "102") is None


def test_stop_cancels_future_ticks(fake_client, store):
    collector = Collector(fake_client, store)
    collector.start(TARGET, interval=0.1)
    assert wait_for(lambda: len(fake_client.calls) >= 1)
    collector.stop()
    assert not collector.is_running

    time.sleep(0.2)
    calls_after_stop = len(fake_client.calls)
    time.sleep(0.3)
    assert len(fake_client.calls) == calls_after_stop


def test_stop_is_safe_when_not_running(fake_client, store):
    collector = Collector(fake_client, store)
    collector.stop()
    collector.start(TARGET, interval=60)
    collector.stop()
    collector.stop()
    assert collector.state is CollectorState.STOPPED


def test_collector_can_restart_after_stop(fake_client, store):
    collector = Collector(fake_client, store)
    collector.start(TARGET, interval=60)
    collector.stop()
    try:
        assert collector.start(TARGET, interval=60) is True
    finally:
        collector.stop()


def test_slow_ticks_overlap_by_default(store):
    client = FakeProxmoxClient(delay=0.5)
    collector = Collector(client, store)
    collector.start(TARGET, interval=0.1)
    try:
        # Later ticks fire while the first is still waiting on upstream
        assert wait_for(lambda: len(client.calls) >= 3, timeout=0.45)
    finally:
        collector.stop()


def test_overlap_disabled_skips_ticks_while_in_flight(store):
    client = FakeProxmoxClient(delay=0.5)
    collector = Collector(client, store, allow_overlap=False)
    collector.start(TARGET, interval=0.1)
    try:
        time.sleep(0.35)
        assert len(client.calls) == 1
    finally:
        collector.stop()


def test_concurrent_collect_once_calls_all_persist(fake_client, store):
    collector = Collector(fake_client, store)
    threads = [threading.Thread(target=collector.collect_once, args=(TARGET,)) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(store.list_snapshots("pve", "102")) == 8


def test_schedule_survives_a_tick_that_cannot_start(fake_client, store, monkeypatch):
    collector = Collector(fake_client, store)
    dispatch = collector._dispatch
    failures = []

    def flaky_dispatch(target):
        if not failures:
            failures.append(target)
            raise RuntimeError("can't start new thread")
        dispatch(target)

    monkeypatch.setattr(collector, "_dispatch", flaky_dispatch)
    collector.start(TARGET, interval=0.1)
    try:
        assert wait_for(lambda: len(fake_client.calls) >= 2)
        assert collector._scheduler_thread.is_alive()
    finally:
        collector.stop()
    assert len(failures) == 1


def test_failed_worker_start_frees_the_in_flight_slot(fake_client, store, monkeypatch):
    collector = Collector(fake_client, store, allow_overlap=False)

    def refuse_start(self):
        raise RuntimeError("can't start new thread")

    monkeypatch.setattr(threading.Thread, "start", refuse_start)
    with pytest.raises(RuntimeError):
        collector._dispatch(TARGET)
    monkeypatch.undo()

    assert collector._in_flight.acquire(blocking=False)
    collector._in_flight.release()


def test_no_tick_is_dispatched_after_stop_returns(fake_client, store, monkeypatch):
    collector = Collector(fake_client, store)
    dispatch = collector._dispatch
    dispatched = []

    def counting_dispatch(target):
        dispatched.append(time.monotonic())
        dispatch(target)

    monkeypatch.setattr(collector, "_dispatch", counting_dispatch)
    collector.start(TARGET, interval=0.01)
    assert wait_for(lambda: len(dispatched) >= 3)
    collector.stop()

    count_at_stop = len(dispatched)
    time.sleep(0.1)
    assert len(dispatched) == count_at_stop
