from __future__ import annotations

import logging
import math
import os
import threading
import time
from collections import deque
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"
_ALLOWED_SEVERITIES: frozenset[str] = frozenset({SEVERITY_WARNING, SEVERITY_CRITICAL})

HEALTH_HEALTHY = "HEALTHY"
HEALTH_DEGRADED = "DEGRADED"
HEALTH_CRITICAL = "CRITICAL"

_MIN_SAMPLES_FOR_PERCENTILES = 10

DEFAULT_BUDGETS: dict[str, tuple[float, str]] = {
    "command-execution": (100.0, SEVERITY_CRITICAL),
    "application-startup": (500.0, SEVERITY_CRITICAL),
    "template-parsing": (100.0, SEVERITY_CRITICAL),
    "state-save": (50.0, SEVERITY_CRITICAL),
    "state-load": (30.0, SEVERITY_CRITICAL),
    "tui-frame-render": (16.67, SEVERITY_CRITICAL),
    "file-system-operation": (50.0, SEVERITY_CRITICAL),
    "checklist-navigation": (10.0, SEVERITY_WARNING),
    "search-operation": (50.0, SEVERITY_WARNING),
    "template-validation": (100.0, SEVERITY_WARNING),
}

TimerHandle = Callable[[], None]


def _now_ms() -> float:
    return time.perf_counter() * 1000.0


def _env_flag(name: str, *, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _env_int(name: str, *, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(float(raw.strip()))
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class MonitorConfig:
    enabled: bool = True
    buffer_size: int = 1000

    @classmethod
    def from_env(cls, base: MonitorConfig | None = None) -> MonitorConfig:
        base = base or cls()
        return cls(
            enabled=_env_flag("PERFORMANCE_MONITORING", default=base.enabled),
            buffer_size=_env_int("PERFORMANCE_BUFFER_SIZE", default=base.buffer_size),
        )


@dataclass(frozen=True)
class Budget:
    max_ms: float
    severity: str = SEVERITY_WARNING


@dataclass
class OperationMetric:
    count: int = 0
    total: float = 0.0
    min: float = math.inf
    max: float = -math.inf
    average: float = 0.0
    p95: float | None = None
    p99: float | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "count": self.count,
            "total": self.total,
            "min": self.min,
            "max": self.max,
            "average": self.average,
        }
        if self.p95 is not None:
            out["p95"] = self.p95
        if self.p99 is not None:
            out["p99"] = self.p99
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OperationMetric:
        def _num(key: str, default: float) -> float:
            value = data.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return default
            return float(value)

        def _opt(key: str) -> float | None:
            value = data.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return None
            return float(value)

        count = data.get("count")
        return cls(
            count=count if isinstance(count, int) and not isinstance(count, bool) else 0,
            total=_num("total", 0.0),
            min=_num("min", math.inf),
            max=_num("max", -math.inf),
            average=_num("average", 0.0),
            p95=_opt("p95"),
            p99=_opt("p99"),
        )


@dataclass(frozen=True)
class BudgetViolation:
    operation: str
    budget: float
    actual: float
    exceedance: float
    severity: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "budget": self.budget,
            "actual": self.actual,
            "exceedance": self.exceedance,
            "severity": self.severity,
        }


@dataclass(frozen=True)
class MeasurementPeriod:
    start: float
    end: float
    duration: float


@dataclass(frozen=True)
class ReportSummary:
    total_operations: int
    budget_violations: int
    overall_health: str
    measurement_period: MeasurementPeriod


@dataclass(frozen=True)
class PerformanceReport:
    metrics: dict[str, OperationMetric]
    violations: list[BudgetViolation]
    summary: ReportSummary
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        period = self.summary.measurement_period
        out: dict[str, Any] = {
            "metrics": {name: metric.to_dict() for name, metric in self.metrics.items()},
            "violations": [v.to_dict() for v in self.violations],
            "summary": {
                "total_operations": self.summary.total_operations,
                "budget_violations": self.summary.budget_violations,
                "overall_health": self.summary.overall_health,
                "measurement_period": {
                    "start": period.start,
                    "end": period.end,
                    "duration": period.duration,
                },
            },
        }
        if self.extra:
            out["extra"] = dict(self.extra)
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PerformanceReport:
        raw_metrics = data.get("metrics")
        if not isinstance(raw_metrics, Mapping):
            raise ValueError("Performance report is missing a 'metrics' mapping.")

        metrics: dict[str, OperationMetric] = {}
        for name, raw in raw_metrics.items():
            if isinstance(name, str) and isinstance(raw, Mapping):
                metrics[name] = OperationMetric.from_dict(raw)

        violations: list[BudgetViolation] = []
        raw_violations = data.get("violations")
        if isinstance(raw_violations, list):
            for item in raw_violations:
                if not isinstance(item, Mapping):
                    continue
                operation = item.get("operation")
                if not isinstance(operation, str):
                    continue
                violations.append(
                    BudgetViolation(
                        operation=operation,
                        budget=float(item.get("budget", 0.0)),
                        actual=float(item.get("actual", 0.0)),
                        exceedance=float(item.get("exceedance", 0.0)),
                        severity=str(item.get("severity", SEVERITY_WARNING)),
                    )
                )

        raw_summary = data.get("summary")
        summary_map: Mapping[str, Any] = raw_summary if isinstance(raw_summary, Mapping) else {}
        raw_period = summary_map.get("measurement_period")
        period_map: Mapping[str, Any] = raw_period if isinstance(raw_period, Mapping) else {}
        period = MeasurementPeriod(
            start=float(period_map.get("start", 0.0)),
            end=float(period_map.get("end", 0.0)),
            duration=float(period_map.get("duration", 0.0)),
        )
        summary = ReportSummary(
            total_operations=int(summary_map.get("total_operations", len(metrics))),
            budget_violations=int(summary_map.get("budget_violations", len(violations))),
            overall_health=str(
                summary_map.get("overall_health", determine_overall_health(violations))
            ),
            measurement_period=period,
        )
        extra = data.get("extra")
        return cls(
            metrics=metrics,
            violations=violations,
            summary=summary,
            extra=dict(extra) if isinstance(extra, Mapping) else {},
        )


def determine_overall_health(violations: list[BudgetViolation]) -> str:
    if not violations:
        return HEALTH_HEALTHY
    if any(v.severity == SEVERITY_CRITICAL for v in violations):
        return HEALTH_CRITICAL
    return HEALTH_DEGRADED


def _percentile(sorted_values: list[float], quantile: float) -> float:
    index = math.ceil(len(sorted_values) * quantile) - 1
    return sorted_values[max(0, index)]


class PerformanceMonitor:
    """
    In-memory operation timings with budgets.

    Raw samples are kept per operation in a bounded buffer; aggregate metrics
    (count/total/min/max/average) cover every sample ever recorded since the
    last `clear()`, percentiles cover only the buffered samples.
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        *,
        budgets: Mapping[str, Budget] | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._config = config or MonitorConfig()
        self._enabled = self._config.enabled
        self._buffer_size = max(1, int(self._config.buffer_size))
        self._log = log or logger
        self._lock = threading.Lock()
        self._metrics: dict[str, OperationMetric] = {}
        self._raw: dict[str, deque[float]] = {}
        self._budgets: dict[str, Budget] = {
            operation: Budget(max_ms=max_ms, severity=severity)
            for operation, (max_ms, severity) in DEFAULT_BUDGETS.items()
        }
        if budgets:
            self._budgets.update(budgets)
        self._measurement_start = _now_ms()

        if self._enabled:
            self._log.info("Performance monitoring enabled (buffer_size=%d)", self._buffer_size)
        else:
            self._log.debug("Performance monitoring disabled")

    @property
    def buffer_size(self) -> int:
        return self._buffer_size

    def is_enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = bool(enabled)
        self._log.info("Performance monitoring %s", "enabled" if enabled else "disabled")

    def start_timer(self, operation: str) -> TimerHandle:
        if not self._enabled:
            return lambda: None

        start = _now_ms()
        stopped = False

        def _stop() -> None:
            nonlocal stopped
            if stopped:
                return
            stopped = True
            self.record_metric(operation, _now_ms() - start)

        return _stop

    @contextmanager
    def measure(self, operation: str) -> Iterator[None]:
        stop = self.start_timer(operation)
        try:
            yield
        finally:
            stop()

    def record_metric(self, operation: str, duration: float) -> None:
        if not self._enabled:
            return

        duration = float(duration)
        with self._lock:
            samples = self._raw.get(operation)
            if samples is None:
                samples = deque(maxlen=self._buffer_size)
                self._raw[operation] = samples
            samples.append(duration)

            metric = self._metrics.get(operation)
            if metric is None:
                metric = OperationMetric()
                self._metrics[operation] = metric

            metric.count += 1
            metric.total += duration
            metric.min = min(metric.min, duration)
            metric.max = max(metric.max, duration)
            metric.average = metric.total / metric.count

            if len(samples) >= _MIN_SAMPLES_FOR_PERCENTILES:
                ordered = sorted(samples)
                metric.p95 = _percentile(ordered, 0.95)
                metric.p99 = _percentile(ordered, 0.99)

        budget = self._budgets.get(operation)
        if budget is not None and duration > budget.max_ms:
            self._on_budget_exceeded(operation, duration, budget)

    def set_budget(self, operation: str, max_ms: float, severity: str = SEVERITY_WARNING) -> None:
        if severity not in _ALLOWED_SEVERITIES:
            raise ValueError(
                f"Unsupported budget severity {severity!r}. "
                f"Allowed: {', '.join(sorted(_ALLOWED_SEVERITIES))}."
            )
        if max_ms <= 0:
            raise ValueError(f"Budget for {operation!r} must be positive, got {max_ms}.")
        self._budgets[operation] = Budget(max_ms=float(max_ms), severity=severity)
        self._log.debug("Performance budget set: %s=%.2fms (%s)", operation, max_ms, severity)

    def get_budget(self, operation: str) -> Budget | None:
        return self._budgets.get(operation)

    def budgets(self) -> dict[str, Budget]:
        return dict(self._budgets)

    def get_metrics(self, operation: str) -> OperationMetric | None:
        with self._lock:
            metric = self._metrics.get(operation)
            return None if metric is None else OperationMetric(**vars(metric))

    def operations(self) -> list[str]:
        with self._lock:
            return sorted(self._metrics)

    def _snapshot(self) -> dict[str, OperationMetric]:
        with self._lock:
            return {
                name: OperationMetric(**vars(metric)) for name, metric in self._metrics.items()
            }

    def get_budget_violations(self) -> list[BudgetViolation]:
        return self._violations(self._snapshot())

    def _violations(self, metrics: Mapping[str, OperationMetric]) -> list[BudgetViolation]:
        violations: list[BudgetViolation] = []
        for operation, metric in metrics.items():
            budget = self._budgets.get(operation)
            if budget is None or metric.max <= budget.max_ms:
                continue
            violations.append(
                BudgetViolation(
                    operation=operation,
                    budget=budget.max_ms,
                    actual=metric.max,
                    exceedance=((metric.max - budget.max_ms) / budget.max_ms) * 100.0,
                    severity=budget.severity,
                )
            )
        return sorted(violations, key=lambda v: v.exceedance, reverse=True)

    def generate_report(self) -> PerformanceReport:
        metrics = self._snapshot()
        violations = self._violations(metrics)
        now = _now_ms()
        return PerformanceReport(
            metrics=metrics,
            violations=violations,
            summary=ReportSummary(
                total_operations=len(metrics),
                budget_violations=len(violations),
                overall_health=determine_overall_health(violations),
                measurement_period=MeasurementPeriod(
                    start=self._measurement_start,
                    end=now,
                    duration=now - self._measurement_start,
                ),
            ),
        )

    def clear(self) -> None:
        with self._lock:
            self._metrics.clear()
            self._raw.clear()
            self._measurement_start = _now_ms()
        self._log.debug("Performance metrics cleared")

    def shutdown(self) -> PerformanceReport | None:
        if not self._enabled:
            return None

        report = self.generate_report()
        self._log.info(
            "Final performance report: operations=%d violations=%d health=%s duration=%dms",
            report.summary.total_operations,
            report.summary.budget_violations,
            report.summary.overall_health,
            round(report.summary.measurement_period.duration),
        )
        for violation in report.violations:
            self._log.warning(
                "Performance budget violation: %s actual=%.2fms budget=%.2fms "
                "exceedance=%.2f%% severity=%s",
                violation.operation,
                violation.actual,
                violation.budget,
                violation.exceedance,
                violation.severity,
            )
        return report

    def _on_budget_exceeded(self, operation: str, duration: float, budget: Budget) -> None:
        exceedance = ((duration - budget.max_ms) / budget.max_ms) * 100.0
        level = logging.WARNING if budget.severity == SEVERITY_CRITICAL else logging.DEBUG
        self._log.log(
            level,
            "Performance budget exceeded: %s actual=%.2fms budget=%.2fms exceedance=%.2f%%",
            operation,
            duration,
            budget.max_ms,
            exceedance,
            extra={
                "operation": operation,
                "budget_ms": budget.max_ms,
                "actual_ms": duration,
                "severity": budget.severity,
            },
        )


_global_monitor: PerformanceMonitor | None = None


def set_global_monitor(monitor: PerformanceMonitor | None) -> None:
    global _global_monitor
    _global_monitor = monitor


def get_global_monitor() -> PerformanceMonitor | None:
    return _global_monitor
