from __future__ import annotations

import json
import logging
import os
import sys
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TextIO

import psutil

from perf_monitor.monitor import (
    SEVERITY_CRITICAL,
    BudgetViolation,
    OperationMetric,
    PerformanceMonitor,
    PerformanceReport,
)

logger = logging.getLogger(__name__)

DISPLAY_MODES: tuple[str, ...] = ("console", "table", "json")

_TREND_THRESHOLD_PERCENT = 5.0


@dataclass(frozen=True)
class DashboardConfig:
    enabled: bool = True
    refresh_interval: float = 5.0
    display_mode: str = "console"
    show_trends: bool = False
    max_display_items: int = 20
    alert_on_violations: bool = True

    def __post_init__(self) -> None:
        if self.display_mode not in DISPLAY_MODES:
            raise ValueError(
                f"Unsupported dashboard display mode {self.display_mode!r}. "
                f"Allowed: {', '.join(DISPLAY_MODES)}."
            )
        if self.refresh_interval <= 0:
            raise ValueError("Dashboard refresh_interval must be positive.")
        if self.max_display_items < 1:
            raise ValueError("Dashboard max_display_items must be at least 1.")

    @classmethod
    def from_env(cls, base: DashboardConfig | None = None) -> DashboardConfig:
        base = base or cls()

        def _flag(name: str, default: bool, *, truthy_only: bool = False) -> bool:
            raw = os.environ.get(name)
            if raw is None:
                return default
            value = raw.strip().lower()
            return value == "true" if truthy_only else value != "false"

        def _positive(name: str, default: float) -> float:
            raw = os.environ.get(name)
            try:
                value = float(raw) if raw else 0.0
            except ValueError:
                value = 0.0
            return value if value > 0 else default

        mode = os.environ.get("DASHBOARD_DISPLAY_MODE", "").strip().lower()
        # Interval is configured in milliseconds through the environment.
        interval_ms = _positive("DASHBOARD_REFRESH_INTERVAL", base.refresh_interval * 1000.0)
        return cls(
            enabled=_flag("PERFORMANCE_DASHBOARD", base.enabled),
            refresh_interval=interval_ms / 1000.0,
            display_mode=mode if mode in DISPLAY_MODES else base.display_mode,
            show_trends=_flag("DASHBOARD_SHOW_TRENDS", base.show_trends, truthy_only=True),
            max_display_items=int(_positive("DASHBOARD_MAX_ITEMS", base.max_display_items)),
            alert_on_violations=_flag("DASHBOARD_ALERT_ON_VIOLATIONS", base.alert_on_violations),
        )


def format_duration(ms: float) -> str:
    if ms < 1:
        return f"{ms * 1000:.2f}us"
    if ms < 1000:
        return f"{ms:.2f}ms"
    return f"{ms / 1000:.2f}s"


def format_memory(num_bytes: float) -> str:
    return f"{num_bytes / (1024 * 1024):.2f}MB"


def trend_arrow(current: float, previous: float | None) -> str:
    if previous is None or previous == 0:
        return ""
    diff = ((current - previous) / previous) * 100.0
    if diff > _TREND_THRESHOLD_PERCENT:
        return "↑"
    if diff < -_TREND_THRESHOLD_PERCENT:
        return "↓"
    return "→"


def _top_by_average(
    report: PerformanceReport, limit: int
) -> list[tuple[str, OperationMetric]]:
    ranked = sorted(report.metrics.items(), key=lambda item: item[1].average, reverse=True)
    return ranked[:limit]


def _status_marker(operation: str, violations: list[BudgetViolation]) -> str:
    for violation in violations:
        if violation.operation == operation:
            return "!!" if violation.severity == SEVERITY_CRITICAL else "! "
    return "ok"


def _process_rss() -> int:
    return int(psutil.Process().memory_info().rss)


class DashboardRenderer:
    def __init__(self, *, max_items: int = 20, show_trends: bool = False) -> None:
        self.max_items = max_items
        self.show_trends = show_trends

    def render(
        self, report: PerformanceReport, previous: PerformanceReport | None = None
    ) -> str:
        raise NotImplementedError

    def _trend(
        self, operation: str, metric: OperationMetric, previous: PerformanceReport | None
    ) -> str:
        if not self.show_trends or previous is None:
            return ""
        before = previous.metrics.get(operation)
        arrow = trend_arrow(metric.average, before.average if before is not None else None)
        return f" {arrow}" if arrow else ""


class ConsoleRenderer(DashboardRenderer):
    def render(
        self, report: PerformanceReport, previous: PerformanceReport | None = None
    ) -> str:
        lines: list[str] = []
        lines.append("Performance Dashboard")
        lines.append("=" * 60)
        lines.append(f"Memory (RSS): {format_memory(_process_rss())}")
        lines.append(f"Total Operations: {report.summary.total_operations}")
        lines.append(f"Health: {report.summary.overall_health}")
        lines.append("")

        lines.append("Top Operations (by avg duration):")
        top = _top_by_average(report, self.max_items)
        if not top:
            lines.append("  No operations data available")
        for operation, metric in top:
            status = _status_marker(operation, report.violations)
            lines.append(
                f"  {status} {operation}: {format_duration(metric.average)} avg "
                f"({metric.count} calls, max: {format_duration(metric.max)})"
                f"{self._trend(operation, metric, previous)}"
            )

        if report.violations:
            lines.append("")
            lines.append("Budget Violations:")
            for violation in report.violations:
                lines.append(
                    f"  - {violation.operation}: {format_duration(violation.actual)} "
                    f"> {format_duration(violation.budget)} [{violation.severity}]"
                )

        lines.append("")
        lines.append(f"Last updated: {datetime.now().strftime('%H:%M:%S')}")
        return "\n".join(lines) + "\n"


class TableRenderer(DashboardRenderer):
    def render(
        self, report: PerformanceReport, previous: PerformanceReport | None = None
    ) -> str:
        rows: list[tuple[str, ...]] = [("Operation", "Avg", "P95", "Max", "Calls", "Status")]
        for operation, metric in _top_by_average(report, self.max_items):
            rows.append(
                (
                    operation + self._trend(operation, metric, previous),
                    format_duration(metric.average),
                    format_duration(metric.p95) if metric.p95 is not None else "-",
                    format_duration(metric.max),
                    str(metric.count),
                    _status_marker(operation, report.violations).strip(),
                )
            )

        lines: list[str] = ["Performance Dashboard - Table View", "=" * 80]
        lines.extend(_format_table(rows))

        if report.violations:
            lines.append("")
            lines.append("Budget Violations:")
            violation_rows: list[tuple[str, ...]] = [
                ("Operation", "Actual", "Budget", "Exceedance", "Severity")
            ]
            for v in report.violations:
                violation_rows.append(
                    (
                        v.operation,
                        format_duration(v.actual),
                        format_duration(v.budget),
                        f"{v.exceedance:.1f}%",
                        v.severity,
                    )
                )
            lines.extend(_format_table(violation_rows))
        return "\n".join(lines) + "\n"


class JsonRenderer(DashboardRenderer):
    def render(
        self, report: PerformanceReport, previous: PerformanceReport | None = None
    ) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "total_operations": report.summary.total_operations,
            "overall_health": report.summary.overall_health,
            "memory_rss": _process_rss(),
            "top_operations": [
                {"name": name, "avg_duration": metric.average, "calls": metric.count}
                for name, metric in _top_by_average(report, self.max_items)
            ],
            "violations": [v.to_dict() for v in report.violations],
        }
        return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def _format_table(rows: list[tuple[str, ...]]) -> list[str]:
    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
    out: list[str] = []
    for idx, row in enumerate(rows):
        out.append("  ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip())
        if idx == 0:
            out.append("  ".join("-" * w for w in widths))
    return out


def get_renderer(
    mode: str, *, max_items: int = 20, show_trends: bool = False
) -> DashboardRenderer:
    renderers: dict[str, type[DashboardRenderer]] = {
        "console": ConsoleRenderer,
        "table": TableRenderer,
        "json": JsonRenderer,
    }
    cls = renderers.get(mode)
    if cls is None:
        raise ValueError(f"Unsupported dashboard display mode {mode!r}.")
    return cls(max_items=max_items, show_trends=show_trends)


def create_summary(report: PerformanceReport, *, max_items: int = 20) -> str:
    if not report.metrics:
        return "No performance metrics available"

    lines: list[str] = []
    lines.append("Performance Summary")
    lines.append(f"- Operations: {report.summary.total_operations}")
    lines.append(f"- Budget violations: {report.summary.budget_violations}")
    lines.append(f"- Overall health: {report.summary.overall_health}")

    if report.violations:
        lines.append("")
        lines.append("Violations:")
        for v in report.violations:
            lines.append(
                f"- {v.operation}: {format_duration(v.actual)} "
                f"(budget {format_duration(v.budget)}, +{v.exceedance:.1f}%, {v.severity})"
            )

    lines.append("")
    lines.append("Top operations:")
    for name, metric in _top_by_average(report, max_items):
        lines.append(
            f"- {name}: {format_duration(metric.average)} avg over {metric.count} calls"
        )
    return "\n".join(lines)


class PerformanceDashboard:
    def __init__(
        self,
        monitor: PerformanceMonitor,
        config: DashboardConfig | None = None,
        *,
        stream: TextIO | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.monitor = monitor
        self.config = config or DashboardConfig()
        self._stream = stream
        self._log = log or logger
        self._renderer = get_renderer(
            self.config.display_mode,
            max_items=self.config.max_display_items,
            show_trends=self.config.show_trends,
        )
        self._last_report: PerformanceReport | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def display_report(self) -> PerformanceReport | None:
        if not self.monitor.is_enabled():
            return None

        with self._lock:
            report = self.monitor.generate_report()
            if report.metrics:
                stream = self._stream or sys.stdout
                stream.write(self._renderer.render(report, self._last_report))
                stream.flush()

            if self.config.alert_on_violations:
                self._alert(self._new_violations(report))

            self._last_report = report
        return report

    def _new_violations(self, report: PerformanceReport) -> list[BudgetViolation]:
        if self._last_report is None:
            return list(report.violations)
        seen = {v.operation for v in self._last_report.violations}
        return [v for v in report.violations if v.operation not in seen]

    def _alert(self, violations: list[BudgetViolation]) -> None:
        for violation in violations:
            level = logging.ERROR if violation.severity == SEVERITY_CRITICAL else logging.WARNING
            self._log.log(
                level,
                "Performance budget violation detected: %s actual=%.2fms budget=%.2fms "
                "exceedance=%.1f%% severity=%s",
                violation.operation,
                violation.actual,
                violation.budget,
                violation.exceedance,
                violation.severity,
            )

    def start(self) -> bool:
        if not self.config.enabled or not self.monitor.is_enabled():
            self._log.debug("Performance dashboard disabled")
            return False
        if self.running:
            return True

        self._log.info(
            "Starting performance dashboard (refresh=%.1fs mode=%s)",
            self.config.refresh_interval,
            self.config.display_mode,
        )
        self.display_report()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="perf-dashboard", daemon=True
        )
        self._thread.start()
        return True

    def _run(self) -> None:
        while not self._stop_event.wait(self.config.refresh_interval):
            self.display_report()

    def stop(self) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=max(1.0, self.config.refresh_interval))
        self._thread = None
        self._log.debug("Performance dashboard stopped")

    def create_summary(self) -> str:
        return create_summary(
            self.monitor.generate_report(), max_items=self.config.max_display_items
        )

    def __enter__(self) -> PerformanceDashboard:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()
