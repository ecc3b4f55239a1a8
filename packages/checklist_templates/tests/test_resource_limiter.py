from __future__ import annotations

import threading
import time
from types import SimpleNamespace

import pytest

from checklist_templates import (
    MemoryLimitError,
    ResourceLimiter,
    ResourceLimitError,
    ResourceLimits,
    TemplateTimeoutError,
)

_MIB = 1024 * 1024


class _FakeProcess:
    def __init__(self) -> None:
        self.rss = 50 * _MIB
        self.cpu_seconds = 1.0
        self.fds = 4
        self.kids: list[object] = []

    def memory_info(self) -> SimpleNamespace:
        return SimpleNamespace(rss=self.rss, vms=self.rss * 2)

    def cpu_times(self) -> SimpleNamespace:
        return SimpleNamespace(user=self.cpu_seconds, system=0.0)

    def num_fds(self) -> int:
        return self.fds

    def children(self, recursive: bool = False) -> list[object]:
        return list(self.kids)

    def cpu_percent(self, interval: float | None = None) -> float:
        return 12.5


def _limiter(**limits: float) -> tuple[ResourceLimiter, _FakeProcess]:
    process = _FakeProcess()
    return ResourceLimiter(ResourceLimits().merged(limits), process=process), process


def test_defaults() -> None:
    limits = ResourceLimiter(process=_FakeProcess()).limits()
    assert limits == ResourceLimits(
        execution_time=5.0,
        memory_delta=10 * _MIB,
        cpu_usage=95.0,
        file_handles=10,
        process_count=0,
    )


def test_returns_result_and_passes_cancel_event() -> None:
    limiter, _ = _limiter()
    seen: list[threading.Event] = []

    def _work(cancel: threading.Event) -> str:
        seen.append(cancel)
        return "done"

    assert limiter.execute_with_limits(_work, "t") == "done"
    assert not seen[0].is_set()


def test_timeout_sets_cancel_event() -> None:
    limiter, _ = _limiter()
    seen: list[threading.Event] = []

    def _slow(cancel: threading.Event) -> None:
        seen.append(cancel)
        cancel.wait(2.0)

    with pytest.raises(TemplateTimeoutError) as exc:
        limiter.execute_with_limits(_slow, "slow", {"execution_time": 0.05})
    assert exc.value.timeout_ms == pytest.approx(50.0)
    assert seen[0].is_set()


def test_memory_growth_over_limit() -> None:
    limiter, process = _limiter()

    def _grow(cancel: threading.Event) -> None:
        process.rss += 20 * _MIB

    with pytest.raises(MemoryLimitError):
        limiter.execute_with_limits(_grow, "mem")


def test_new_file_handles_over_limit() -> None:
    limiter, process = _limiter(file_handles=2)

    def _open(cancel: threading.Event) -> None:
        process.fds += 3

    with pytest.raises(ResourceLimitError) as exc:
        limiter.execute_with_limits(_open, "fds")
    assert exc.value.resource_type == "fileHandles"


def test_child_processes_not_allowed() -> None:
    limiter, process = _limiter()

    def _spawn(cancel: threading.Event) -> None:
        process.kids.append(object())

    with pytest.raises(ResourceLimitError) as exc:
        limiter.execute_with_limits(_spawn, "spawn")
    assert exc.value.resource_type == "processCount"


def test_cpu_usage_over_limit() -> None:
    limiter, process = _limiter()

    def _burn(cancel: threading.Event) -> None:
        time.sleep(0.15)
        process.cpu_seconds += 1.0

    with pytest.raises(ResourceLimitError) as exc:
        limiter.execute_with_limits(_burn, "cpu")
    assert exc.value.resource_type == "CPU"


def test_update_limits_and_unknown_keys() -> None:
    limiter, _ = _limiter()
    assert limiter.update_limits(file_handles=20).file_handles == 20
    with pytest.raises(ValueError, match="Unknown resource limit"):
        limiter.update_limits(disk=1)
    with pytest.raises(ValueError):
        ResourceLimits(execution_time=0)


def test_usage_snapshot() -> None:
    limiter, process = _limiter()
    process.kids.append(object())
    snapshot = limiter.usage_snapshot()
    assert snapshot.cpu_usage == 12.5
    assert snapshot.file_handles == 4
    assert snapshot.process_count == 1
    assert snapshot.memory_delta == 0
