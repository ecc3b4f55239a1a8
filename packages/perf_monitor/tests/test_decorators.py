from __future__ import annotations

import asyncio
import gc
import weakref

import pytest

from perf_monitor import (
    MonitorConfig,
    PerformanceMonitor,
    get_global_monitor,
    set_global_monitor,
    timed,
    timed_class,
    timed_function,
    with_timing,
)


def test_timed_records_plain_function() -> None:
    monitor = PerformanceMonitor()

    @timed(monitor=monitor)
    def work(x: int) -> int:
        return x * 2

    assert work(3) == 6
    assert work.__name__ == "work"
    assert monitor.get_metrics("work").count == 1


def test_timed_sets_budget_and_custom_name() -> None:
    monitor = PerformanceMonitor()

    @timed(budget_ms=25, severity="critical", operation_name="load-state", monitor=monitor)
    def load() -> None:
        return None

    load()
    budget = monitor.get_budget("load-state")
    assert budget is not None
    assert budget.max_ms == 25
    assert budget.severity == "critical"


def test_timed_records_when_call_raises() -> None:
    monitor = PerformanceMonitor()

    @timed(operation_name="boom", monitor=monitor)
    def boom() -> None:
        raise RuntimeError("nope")

    with pytest.raises(RuntimeError):
        boom()
    assert monitor.get_metrics("boom").count == 1


def test_timed_async_function() -> None:
    monitor = PerformanceMonitor()

    @timed(operation_name="fetch", monitor=monitor)
    async def fetch() -> str:
        await asyncio.sleep(0)
        return "done"

    assert asyncio.run(fetch()) == "done"
    assert monitor.get_metrics("fetch").count == 1


def test_timed_without_monitor_calls_through() -> None:
    previous = get_global_monitor()
    set_global_monitor(None)
    try:

        @timed()
        def plain() -> int:
            return 7

        assert plain() == 7
    finally:
        set_global_monitor(previous)


def test_timed_uses_global_monitor() -> None:
    previous = get_global_monitor()
    monitor = PerformanceMonitor()
    set_global_monitor(monitor)
    try:

        @timed(operation_name="global-op")
        def op() -> None:
            return None

        op()
        assert monitor.get_metrics("global-op").count == 1
    finally:
        set_global_monitor(previous)


def test_timed_disabled_monitor_skips_recording() -> None:
    monitor = PerformanceMonitor(MonitorConfig(enabled=False))

    @timed(operation_name="op", monitor=monitor)
    def op() -> int:
        return 1

    assert op() == 1
    assert monitor.get_metrics("op") is None


def test_timed_class_wraps_public_methods() -> None:
    monitor = PerformanceMonitor()

    @timed_class(monitor=monitor)
    class Navigator:
        def next_step(self) -> str:
            return self._advance()

        def _advance(self) -> str:
            return "step-2"

        @staticmethod
        def reset() -> bool:
            return True

    nav = Navigator()
    assert nav.next_step() == "step-2"
    assert Navigator.reset() is True
    assert monitor.get_metrics("Navigator.next_step").count == 1
    assert monitor.get_metrics("Navigator.reset").count == 1
    assert monitor.get_metrics("Navigator._advance") is None


def test_with_timing_and_timed_function() -> None:
    monitor = PerformanceMonitor()

    with with_timing("block", budget_ms=1000, monitor=monitor):
        pass

    wrapped = timed_function("adder", lambda a, b: a + b, monitor=monitor)
    assert wrapped(1, 2) == 3

    assert monitor.get_metrics("block").count == 1
    assert monitor.get_budget("block").max_ms == 1000
    assert monitor.get_metrics("adder").count == 1


def test_budget_is_registered_on_each_global_monitor() -> None:
    @timed(budget_ms=40)
    def work() -> None:
        pass

    first = PerformanceMonitor()
    set_global_monitor(first)
    try:
        work()
        second = PerformanceMonitor()
        set_global_monitor(second)
        work()
    finally:
        set_global_monitor(None)

    assert first.get_budget("work").max_ms == 40
    assert second.get_budget("work").max_ms == 40

    ref = weakref.ref(first)
    del first
    gc.collect()
    assert ref() is None
