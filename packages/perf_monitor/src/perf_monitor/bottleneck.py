from __future__ import annotations

from dataclasses import dataclass, field

_MIB = 1024 * 1024

SEVERITY_WEIGHTS: dict[str, int] = {"critical": 4, "high": 3, "medium": 2, "low": 1}


@dataclass(frozen=True)
class BottleneckThresholds:
    duration_ms: float = 100.0
    memory_growth_bytes: int = 10 * _MIB
    cpu_percent: float = 80.0


@dataclass(frozen=True)
class OperationProfile:
    operation: str
    start: float
    end: float
    duration: float
    cpu_time_ms: float | None = None
    memory_delta_bytes: int | None = None


@dataclass(frozen=True)
class Bottleneck:
    operation: str
    kind: str
    severity: str
    description: str
    recommendation: str
    metrics: dict[str, float] = field(default_factory=dict)


def _duration_severity(duration: float) -> str:
    if duration > 1000:
        return "critical"
    if duration > 500:
        return "high"
    if duration > 200:
        return "medium"
    return "low"


def _duration_recommendation(duration: float) -> str:
    if duration > 1000:
        return "Break the operation into smaller chunks or add caching/memoization."
    if duration > 500:
        return "Profile the operation to find expensive computations or I/O."
    return "Optimize the algorithm or reduce computational complexity."


def _memory_severity(delta_bytes: int) -> str:
    mib = delta_bytes / _MIB
    if mib > 100:
        return "critical"
    if mib > 50:
        return "high"
    if mib > 20:
        return "medium"
    return "low"


def _memory_recommendation(delta_bytes: int) -> str:
    mib = delta_bytes / _MIB
    if mib > 100:
        return "URGENT: Investigate memory leaks. Stream or batch large datasets."
    if mib > 50:
        return "Review object creation patterns; reuse objects where possible."
    return "Bound caches (e.g. weak references or LRU) to limit retained memory."


def _cpu_severity(percent: float) -> str:
    if percent > 95:
        return "critical"
    if percent > 90:
        return "high"
    if percent > 85:
        return "medium"
    return "low"


def _cpu_recommendation(percent: float) -> str:
    if percent > 95:
        return "URGENT: CPU-bound operation. Move it off the main thread or into a worker process."
    if percent > 90:
        return "High CPU usage. Profile hot code paths and optimize algorithms."
    return "Optimize loops, reduce allocations or pick more efficient data structures."


class BottleneckDetector:
    def __init__(self, thresholds: BottleneckThresholds | None = None) -> None:
        self.thresholds = thresholds or BottleneckThresholds()

    def detect(self, profile: OperationProfile) -> Bottleneck | None:
        """Return the most severe bottleneck found in `profile`, if any."""

        found: list[Bottleneck] = []

        if profile.duration > self.thresholds.duration_ms:
            found.append(
                Bottleneck(
                    operation=profile.operation,
                    kind="cpu",
                    severity=_duration_severity(profile.duration),
                    description=(
                        f"Operation took {profile.duration:.2f}ms, exceeding threshold of "
                        f"{self.thresholds.duration_ms:g}ms"
                    ),
                    recommendation=_duration_recommendation(profile.duration),
                    metrics={"duration": profile.duration},
                )
            )

        delta = profile.memory_delta_bytes
        if delta is not None and delta > self.thresholds.memory_growth_bytes:
            found.append(
                Bottleneck(
                    operation=profile.operation,
                    kind="memory",
                    severity=_memory_severity(delta),
                    description=f"Operation increased memory usage by {delta / _MIB:.2f}MB",
                    recommendation=_memory_recommendation(delta),
                    metrics={"memory_delta": float(delta)},
                )
            )

        if profile.cpu_time_ms is not None and profile.duration > 0:
            percent = (profile.cpu_time_ms / profile.duration) * 100.0
            if percent > self.thresholds.cpu_percent:
                found.append(
                    Bottleneck(
                        operation=profile.operation,
                        kind="cpu",
                        severity=_cpu_severity(percent),
                        description=(
                            f"Operation used {percent:.1f}% CPU, exceeding threshold of "
                            f"{self.thresholds.cpu_percent:g}%"
                        ),
                        recommendation=_cpu_recommendation(percent),
                        metrics={"cpu_time": profile.cpu_time_ms},
                    )
                )

        if not found:
            return None
        return max(found, key=lambda b: SEVERITY_WEIGHTS[b.severity])
