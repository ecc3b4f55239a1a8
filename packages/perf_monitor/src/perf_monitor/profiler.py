from __future__ import annotations

import logging
import math
import os
import time
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import psutil

from perf_monitor.bottleneck import (
    Bottleneck,
    BottleneckDetector,
    BottleneckThresholds,
    OperationProfile,
)

logger = logging.getLogger(__name__)

_MIB = 1024 * 1024
_GROWTH_THRESHOLD_BYTES_PER_S = float(_MIB)
_TOP_OPERATIONS = 10


@dataclass(frozen=True)
class ProfilerConfig:
    enabled: bool = True
    memory_snapshots: bool = True
    cpu_profiling: bool = True
    auto_detect_bottlenecks: bool = True
    max_snapshots: int = 1000
    max_profiles: int = 1000
    thresholds: BottleneckThresholds = BottleneckThresholds()

    @classmethod
    def from_env(cls) -> ProfilerConfig:
        def _flag(name: str, default: bool) -> bool:
            raw = os.environ.get(name)
            if raw is None:
                return default
            return raw.strip().lower() != "false"

        def _number(name: str, default: float) -> float:
            raw = os.environ.get(name)
            try:
                value = float(raw) if raw else 0.0
            except ValueError:
                value = 0.0
            return value or default

        base = cls()
        return cls(
            enabled=_flag("PERFORMANCE_PROFILING", base.enabled),
            memory_snapshots=_flag("PROFILE_MEMORY", base.memory_snapshots),
            cpu_profiling=_flag("PROFILE_CPU", base.cpu_profiling),
            auto_detect_bottlenecks=_flag("AUTO_DETECT_BOTTLENECKS", base.auto_detect_bottlenecks),
            max_snapshots=int(_number("MAX_SNAPSHOTS", base.max_snapshots)),
            max_profiles=int(_number("MAX_PROFILES", base.max_profiles)),
            thresholds=BottleneckThresholds(
                duration_ms=_number(
                    "BOTTLENECK_DURATION_THRESHOLD", base.thresholds.duration_ms
                ),
                memory_growth_bytes=int(
                    _number("BOTTLENECK_MEMORY_THRESHOLD", base.thresholds.memory_growth_bytes)
                ),
                cpu_percent=_number("BOTTLENECK_CPU_THRESHOLD", base.thresholds.cpu_percent),
            ),
        )


@dataclass(frozen=True)
class MemorySnapshot:
    timestamp: float
    rss: int
    vms: int


@dataclass(frozen=True)
class MemoryAnalysis:
    trend: str
    growth: float
    peak: int
    average: float
    volatility: float


@dataclass(frozen=True)
class _ActiveOperation:
    start: float
    cpu_start: float | None
    memory_start: MemorySnapshot | None


def _cpu_seconds(process: psutil.Process) -> float:
    times = process.cpu_times()
    return float(times.user + times.system)


class PerformanceProfiler:
    """
    Per-operation wall time, CPU time and RSS growth for the current process.

    Memory is sampled when an operation starts and ends (and on demand through
    `take_snapshot()`); the snapshot history is bounded by `max_snapshots` and completed profiles
    by `max_profiles`.
    """

    def __init__(
        self,
        config: ProfilerConfig | None = None,
        *,
        process: psutil.Process | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.config = config or ProfilerConfig()
        self._process = process or psutil.Process()
        self._log = log or logger
        self._detector = BottleneckDetector(self.config.thresholds)
        self._snapshots: deque[MemorySnapshot] = deque(maxlen=max(1, self.config.max_snapshots))
        self._profiles: deque[OperationProfile] = deque(maxlen=max(1, self.config.max_profiles))
        self._active: dict[str, _ActiveOperation] = {}

    def take_snapshot(self) -> MemorySnapshot:
        info = self._process.memory_info()
        snapshot = MemorySnapshot(
            timestamp=time.perf_counter() * 1000.0, rss=int(info.rss), vms=int(info.vms)
        )
        self._snapshots.append(snapshot)
        return snapshot

    def start_operation(self, operation: str) -> None:
        if not self.config.enabled:
            return
        memory_start = self.take_snapshot() if self.config.memory_snapshots else None
        cpu_start = _cpu_seconds(self._process) if self.config.cpu_profiling else None
        self._active[operation] = _ActiveOperation(
            start=time.perf_counter() * 1000.0,
            cpu_start=cpu_start,
            memory_start=memory_start,
        )
        self._log.debug("Started profiling operation %s", operation)

    def end_operation(self, operation: str) -> OperationProfile | None:
        if not self.config.enabled:
            return None

        active = self._active.pop(operation, None)
        if active is None:
            self._log.warning("No active profiling session for operation %s", operation)
            return None

        end = time.perf_counter() * 1000.0
        cpu_time_ms: float | None = None
        if active.cpu_start is not None:
            cpu_time_ms = (_cpu_seconds(self._process) - active.cpu_start) * 1000.0

        memory_delta: int | None = None
        if active.memory_start is not None:
            memory_delta = self.take_snapshot().rss - active.memory_start.rss

        profile = OperationProfile(
            operation=operation,
            start=active.start,
            end=end,
            duration=end - active.start,
            cpu_time_ms=cpu_time_ms,
            memory_delta_bytes=memory_delta,
        )
        self._profiles.append(profile)

        if self.config.auto_detect_bottlenecks:
            bottleneck = self._detector.detect(profile)
            if bottleneck is not None:
                self._log.warning(
                    "Performance bottleneck detected: %s type=%s severity=%s: %s",
                    bottleneck.operation,
                    bottleneck.kind,
                    bottleneck.severity,
                    bottleneck.description,
                )

        self._log.debug(
            "Completed profiling operation %s duration=%.2fms cpu=%s",
            operation,
            profile.duration,
            "n/a" if cpu_time_ms is None else f"{cpu_time_ms:.2f}ms",
        )
        return profile

    @contextmanager
    def profile(self, operation: str) -> Iterator[None]:
        self.start_operation(operation)
        try:
            yield
        finally:
            self.end_operation(operation)

    def analyze_memory_pattern(self) -> MemoryAnalysis:
        if len(self._snapshots) < 2:
            return MemoryAnalysis(trend="stable", growth=0.0, peak=0, average=0.0, volatility=0.0)

        values = [s.rss for s in self._snapshots]
        first = self._snapshots[0]
        last = self._snapshots[-1]
        elapsed_s = (last.timestamp - first.timestamp) / 1000.0
        growth = (last.rss - first.rss) / elapsed_s if elapsed_s > 0 else 0.0

        average = sum(values) / len(values)
        volatility = math.sqrt(sum((v - average) ** 2 for v in values) / len(values))

        if volatility > average * 0.1:
            trend = "volatile"
        elif growth > _GROWTH_THRESHOLD_BYTES_PER_S:
            trend = "growing"
        elif growth < -_GROWTH_THRESHOLD_BYTES_PER_S:
            trend = "shrinking"
        else:
            trend = "stable"

        return MemoryAnalysis(
            trend=trend, growth=growth, peak=max(values), average=average, volatility=volatility
        )

    def generate_report(self) -> dict[str, Any]:
        total = sum(p.duration for p in self._profiles)
        bottlenecks: list[Bottleneck] = []
        for profile in self._profiles:
            found = self._detector.detect(profile)
            if found is not None:
                bottlenecks.append(found)

        top = sorted(self._profiles, key=lambda p: p.duration, reverse=True)[:_TOP_OPERATIONS]
        memory = self.analyze_memory_pattern()
        return {
            "summary": {
                "total_operations": len(self._profiles),
                "total_duration": total,
                "average_duration": total / len(self._profiles) if self._profiles else 0.0,
                "memory_snapshots": len(self._snapshots),
                "bottlenecks_detected": len(bottlenecks),
            },
            "memory_analysis": {
                "trend": memory.trend,
                "growth": memory.growth,
                "peak": memory.peak,
                "average": memory.average,
                "volatility": memory.volatility,
            },
            "top_operations": [
                {"operation": p.operation, "duration": p.duration, "cpu_time": p.cpu_time_ms}
                for p in top
            ],
            "bottlenecks": [
                {
                    "operation": b.operation,
                    "type": b.kind,
                    "severity": b.severity,
                    "description": b.description,
                    "recommendation": b.recommendation,
                    "metrics": dict(b.metrics),
                }
                for b in bottlenecks
            ],
            "recommendations": _recommendations(bottlenecks, memory),
        }

    def clear(self) -> None:
        self._snapshots.clear()
        self._profiles.clear()
        self._active.clear()
        self._log.debug("Performance profiler data cleared")

    def statistics(self) -> dict[str, int]:
        current = self._snapshots[-1].rss if self._snapshots else self._process.memory_info().rss
        return {
            "memory_snapshots": len(self._snapshots),
            "profiles": len(self._profiles),
            "active_operations": len(self._active),
            "current_memory_usage": int(current),
        }


def _recommendations(bottlenecks: list[Bottleneck], memory: MemoryAnalysis) -> list[str]:
    out: list[str] = []

    critical = [b for b in bottlenecks if b.severity == "critical"]
    if critical:
        out.append(
            f"CRITICAL: {len(critical)} critical performance bottlenecks detected. "
            "Immediate action required."
        )
    if memory.trend == "growing":
        out.append(
            f"Memory usage is growing at {memory.growth / _MIB:.2f}MB/sec. "
            "Investigate for memory leaks."
        )
    if memory.trend == "volatile":
        out.append(
            f"Memory usage is volatile (stddev={memory.volatility / _MIB:.2f}MB). "
            "Consider reusing objects."
        )

    cpu_bound = [b for b in bottlenecks if b.kind == "cpu"]
    if len(cpu_bound) > 2:
        out.append(
            f"{len(cpu_bound)} CPU-intensive operations detected. "
            "Consider background workers or async processing."
        )

    slow = [b for b in bottlenecks if b.metrics.get("duration", 0.0) > 500]
    if slow:
        out.append(
            f"{len(slow)} slow operations (>500ms) detected. Profile and optimize these operations."
        )

    if not out:
        out.append(
            "No major performance issues detected. Consider periodic profiling to maintain "
            "performance."
        )
    return out
