from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass

from perf_monitor.monitor import OperationMetric, PerformanceReport

logger = logging.getLogger(__name__)

SEVERITY_ORDER: tuple[str, ...] = ("critical", "major", "moderate", "minor")

_TREND_SLOPE_THRESHOLD = 0.001
_TREND_MIN_CONFIDENCE = 0.3
_PREDICTION_HORIZON_MS = 60_000.0


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value else default


@dataclass(frozen=True)
class RegressionConfig:
    threshold: float = 20.0
    min_samples: int = 5
    confidence_level: float = 0.8
    enable_trend_analysis: bool = True
    trend_window: int = 10

    @classmethod
    def from_env(cls, base: RegressionConfig | None = None) -> RegressionConfig:
        base = base or cls()
        trends_raw = os.environ.get("PERFORMANCE_ENABLE_TRENDS")
        return cls(
            threshold=_env_float("PERFORMANCE_REGRESSION_THRESHOLD", base.threshold),
            min_samples=int(_env_float("PERFORMANCE_MIN_SAMPLES", base.min_samples)),
            confidence_level=_env_float("PERFORMANCE_CONFIDENCE_LEVEL", base.confidence_level),
            enable_trend_analysis=(
                base.enable_trend_analysis
                if trends_raw is None
                else trends_raw.strip().lower() != "false"
            ),
            trend_window=int(_env_float("PERFORMANCE_TREND_WINDOW", base.trend_window)),
        )


@dataclass(frozen=True)
class RegressionResult:
    operation: str
    has_regression: bool
    severity: str
    current: OperationMetric
    baseline: OperationMetric
    change_percent: float
    confidence: float
    recommendation: str


@dataclass(frozen=True)
class TrendPoint:
    timestamp: float
    value: float


@dataclass(frozen=True)
class TrendResult:
    operation: str
    direction: str
    change_rate: float
    data_points: list[TrendPoint]
    predicted_value: float
    prediction_confidence: float


@dataclass(frozen=True)
class _HistoryEntry:
    timestamp: float
    metric: OperationMetric


def _headline_value(metric: OperationMetric) -> float:
    return metric.p95 if metric.p95 is not None else metric.average


def _coefficient_of_variation(metric: OperationMetric) -> float:
    if metric.average == 0:
        return 0.0
    # Standard deviation estimated from the range.
    return ((metric.max - metric.min) / 4.0) / metric.average


def _confidence(current: OperationMetric, baseline: OperationMetric) -> float:
    avg_cv = (_coefficient_of_variation(current) + _coefficient_of_variation(baseline)) / 2.0
    sample_factor = min(current.count, baseline.count) / 100.0
    variance_factor = max(0.0, 1.0 - avg_cv)
    return min(1.0, sample_factor * variance_factor * 0.8 + 0.2)


def _severity(change_percent: float, confidence: float) -> str:
    if confidence < 0.5:
        return "minor"
    if change_percent >= 100:
        return "critical"
    if change_percent >= 50:
        return "major"
    if change_percent >= 25:
        return "moderate"
    return "minor"


def _recommendation(severity: str, change_percent: float, operation: str) -> str:
    pct = f"{change_percent:.1f}%"
    if severity == "critical":
        return (
            f"URGENT: {operation} is {pct} slower. Immediate investigation required. "
            "Consider rollback if affecting users."
        )
    if severity == "major":
        return (
            f"HIGH PRIORITY: {operation} shows significant performance degradation ({pct}). "
            "Profile the operation to identify bottlenecks."
        )
    if severity == "moderate":
        return (
            f"MEDIUM PRIORITY: {operation} performance declined by {pct}. "
            "Review recent changes and optimize if possible."
        )
    return (
        f"LOW PRIORITY: Minor regression in {operation} ({pct}). "
        "Monitor for continued degradation."
    )


def _linear_regression(points: list[TrendPoint]) -> tuple[float, float]:
    n = len(points)
    if n < 2:
        return 0.0, 0.0

    sum_x = sum(p.timestamp for p in points)
    sum_y = sum(p.value for p in points)
    sum_xy = sum(p.timestamp * p.value for p in points)
    sum_xx = sum(p.timestamp * p.timestamp for p in points)

    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return 0.0, 0.0
    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n

    mean_y = sum_y / n
    ss_total = sum((p.value - mean_y) ** 2 for p in points)
    ss_residual = sum((p.value - (slope * p.timestamp + intercept)) ** 2 for p in points)
    r_squared = 1.0 - ss_residual / ss_total if ss_total > 0 else 0.0
    return slope, max(0.0, min(1.0, r_squared))


def _trend_direction(slope: float, confidence: float) -> str:
    if confidence < _TREND_MIN_CONFIDENCE:
        return "stable"
    if slope > _TREND_SLOPE_THRESHOLD:
        return "degrading"
    if slope < -_TREND_SLOPE_THRESHOLD:
        return "improving"
    return "stable"


class RegressionDetector:
    def __init__(
        self,
        config: RegressionConfig | None = None,
        *,
        clock: Callable[[], float] | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.config = config or RegressionConfig()
        self._clock = clock or (lambda: time.time() * 1000.0)
        self._log = log or logger
        self._history: dict[str, list[_HistoryEntry]] = {}

    def detect_regressions(
        self, current: PerformanceReport, baseline: PerformanceReport
    ) -> list[RegressionResult]:
        results: list[RegressionResult] = []
        for operation, current_metric in current.metrics.items():
            baseline_metric = baseline.metrics.get(operation)
            if baseline_metric is None:
                self._log.debug("No baseline data for operation %s", operation)
                continue
            if (
                current_metric.count < self.config.min_samples
                or baseline_metric.count < self.config.min_samples
            ):
                self._log.debug(
                    "Insufficient samples for %s (current=%d baseline=%d min=%d)",
                    operation,
                    current_metric.count,
                    baseline_metric.count,
                    self.config.min_samples,
                )
                continue

            result = self._analyze(operation, current_metric, baseline_metric)
            results.append(result)
            if result.has_regression:
                self._log.warning(
                    "Performance regression detected: %s severity=%s change=%.1f%% "
                    "confidence=%.2f",
                    operation,
                    result.severity,
                    result.change_percent,
                    result.confidence,
                )

        return sorted(results, key=lambda r: r.change_percent, reverse=True)

    def _analyze(
        self, operation: str, current: OperationMetric, baseline: OperationMetric
    ) -> RegressionResult:
        current_value = _headline_value(current)
        baseline_value = _headline_value(baseline)
        if baseline_value == 0:
            change_percent = 0.0 if current_value == 0 else float("inf")
        else:
            change_percent = ((current_value - baseline_value) / baseline_value) * 100.0

        confidence = _confidence(current, baseline)
        severity = _severity(change_percent, confidence)
        return RegressionResult(
            operation=operation,
            has_regression=change_percent > self.config.threshold,
            severity=severity,
            current=current,
            baseline=baseline,
            change_percent=change_percent,
            confidence=confidence,
            recommendation=_recommendation(severity, change_percent, operation),
        )

    def add_data_point(self, operation: str, metric: OperationMetric) -> None:
        if not self.config.enable_trend_analysis:
            return
        history = self._history.setdefault(operation, [])
        history.append(_HistoryEntry(timestamp=self._clock(), metric=metric))
        window = self.config.trend_window
        if len(history) > window * 2:
            del history[: len(history) - window]

    def history_length(self, operation: str) -> int:
        return len(self._history.get(operation, []))

    def analyze_trends(self) -> list[TrendResult]:
        if not self.config.enable_trend_analysis:
            return []

        results: list[TrendResult] = []
        for operation, history in self._history.items():
            if len(history) < self.config.min_samples:
                continue
            recent = history[-self.config.trend_window :]
            points = [
                TrendPoint(timestamp=entry.timestamp, value=_headline_value(entry.metric))
                for entry in recent
            ]
            slope, confidence = _linear_regression(points)
            predicted = points[-1].value + slope * _PREDICTION_HORIZON_MS
            results.append(
                TrendResult(
                    operation=operation,
                    direction=_trend_direction(slope, confidence),
                    change_rate=slope,
                    data_points=points,
                    predicted_value=max(0.0, predicted),
                    prediction_confidence=confidence,
                )
            )
        return results

    def clear_history(self) -> None:
        self._history.clear()
        self._log.debug("Performance regression detector history cleared")


def render_regression_report(results: list[RegressionResult]) -> str:
    regressions = [r for r in results if r.has_regression]
    if not regressions:
        return "No performance regressions detected."

    grouped: dict[str, list[RegressionResult]] = {severity: [] for severity in SEVERITY_ORDER}
    for result in regressions:
        grouped.setdefault(result.severity, []).append(result)

    counts = ", ".join(f"{len(grouped[s])} {s}" for s in SEVERITY_ORDER)
    lines: list[str] = ["Performance Regression Report", "", f"Summary: {counts}", ""]
    for severity in SEVERITY_ORDER:
        items = grouped[severity]
        if not items:
            continue
        lines.append(f"{severity.upper()} Regressions:")
        for item in items:
            lines.append(
                f"  - {item.operation}: +{item.change_percent:.1f}% "
                f"({item.confidence:.2f} confidence)"
            )
            lines.append(f"    {item.recommendation}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"
