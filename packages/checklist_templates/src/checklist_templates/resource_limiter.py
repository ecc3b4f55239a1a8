from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, TypeVar

import psutil

from checklist_templates.errors import MemoryLimitError, ResourceLimitError, TemplateTimeoutError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_MIB = 1024 * 1024

# CPU percentages over very short windows are noise; only enforce past this.
_MIN_CPU_SAMPLE_SECONDS = 0.1


@dataclass(frozen=True)
class ResourceLimits:
    execution_time: float = 5.0
    memory_delta: int = 10 * _MIB
    cpu_usage: float = 95.0
    file_handles: int = 10
    process_count: int = 0

    def __post_init__(self) -> None:
        if self.execution_time <= 0:
            raise ValueError(f"execution_time must be positive, got {self.execution_time}.")
        for name in ("memory_delta", "cpu_usage", "file_handles", "process_count"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}.")

    def merged(self, overrides: Mapping[str, Any] | None) -> ResourceLimits:
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown resource limit(s): {', '.join(unknown)}")
        return replace(self, **dict(overrides))


@dataclass(frozen=True)
class ResourceUsage:
    memory_delta: int = 0
    cpu_usage: float = 0.0
    file_handles: int = 0
    process_count: int = 0
    duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class _Sample:
    wall: float
    rss: int
    cpu_seconds: float
    handles: int
    children: int


class ResourceLimiter:
    """
    Run a callable on a worker thread with a wall-clock limit, then check how
    much memory, CPU, file handles and child processes it added.

    The callable receives a `threading.Event` that is set when the time limit
    expires; long-running work should poll it and stop.
    """

    def __init__(
        self,
        limits: ResourceLimits | Mapping[str, Any] | None = None,
        *,
        process: Any | None = None,
    ) -> None:
        if limits is None:
            limits = ResourceLimits()
        elif not isinstance(limits, ResourceLimits):
            limits = ResourceLimits().merged(limits)
        self._limits = limits
        self._process = process if process is not None else psutil.Process()

    def limits(self) -> ResourceLimits:
        return self._limits

    def update_limits(self, **updates: Any) -> ResourceLimits:
        self._limits = self._limits.merged(updates)
        return self._limits

    def execute_with_limits(
        self,
        fn: Callable[[threading.Event], _T],
        template_id: str | None = None,
        overrides: Mapping[str, Any] | None = None,
    ) -> _T:
        limits = self._limits.merged(overrides)
        label = template_id or "unknown"
        start = self._sample()
        cancel = threading.Event()

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="template-limits")
        try:
            future = executor.submit(fn, cancel)
            try:
                result = future.result(timeout=limits.execution_time)
            except FutureTimeoutError as e:
                cancel.set()
                logger.warning(
                    "Template %s exceeded execution time limit (%.3fs)",
                    label,
                    limits.execution_time,
                )
                raise TemplateTimeoutError(
                    label, limits.execution_time * 1000.0, "sandbox execution"
                ) from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        usage = self._usage_since(start)
        self._check(usage, limits, template_id)
        return result

    def usage_snapshot(self) -> ResourceUsage:
        sample = self._sample()
        return ResourceUsage(
            cpu_usage=float(self._process.cpu_percent(interval=None)),
            file_handles=sample.handles,
            process_count=sample.children,
        )

    def _sample(self) -> _Sample:
        cpu = self._process.cpu_times()
        return _Sample(
            wall=time.perf_counter(),
            rss=int(self._process.memory_info().rss),
            cpu_seconds=float(cpu.user + cpu.system),
            handles=self._open_handles(),
            children=len(self._process.children(recursive=True)),
        )

    def _open_handles(self) -> int:
        if hasattr(self._process, "num_fds"):
            return int(self._process.num_fds())
        return int(self._process.num_handles())

    def _usage_since(self, start: _Sample) -> ResourceUsage:
        end = self._sample()
        duration = end.wall - start.wall
        cpu_usage = 0.0
        if duration >= _MIN_CPU_SAMPLE_SECONDS:
            cpu_usage = (end.cpu_seconds - start.cpu_seconds) / duration * 100.0
        return ResourceUsage(
            memory_delta=end.rss - start.rss,
            cpu_usage=cpu_usage,
            file_handles=max(0, end.handles - start.handles),
            process_count=max(0, end.children - start.children),
            duration=duration,
        )

    @staticmethod
    def _check(usage: ResourceUsage, limits: ResourceLimits, template_id: str | None) -> None:
        if usage.memory_delta > limits.memory_delta:
            raise MemoryLimitError(
                template_id or "unknown", usage.memory_delta, limits.memory_delta
            )
        if usage.cpu_usage > limits.cpu_usage:
            raise ResourceLimitError("CPU", usage.cpu_usage, limits.cpu_usage, template_id)
        if usage.file_handles > limits.file_handles:
            raise ResourceLimitError(
                "fileHandles", usage.file_handles, limits.file_handles, template_id
            )
        if usage.process_count > limits.process_count:
            raise ResourceLimitError(
                "processCount", usage.process_count, limits.process_count, template_id
            )
