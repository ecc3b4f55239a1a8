from __future__ import annotations

import json
import logging
import threading

import pytest

from perf_monitor import (
    MonitorConfig,
    PerformanceMonitor,
    PerformanceReport,
    get_global_monitor,
    set_global_monitor,
)


def test_record_metric_updates_aggregates() -> None:
    monitor = PerformanceMonitor()
    for duration in (4.0, 2.0, 6.0):
        monitor.record_metric("search", duration)

    metric = monitor.get_metrics("search")
    assert metric is not None
    assert metric.count == 3
    assert metric.total == 12.0
    assert metric.min == 2.0
    assert metric.max == 6.0
    assert metric.average == 4.0
    assert metric.p95 is None
    assert metric.p99 is None
    assert monitor.get_metrics("missing") is None


def test_percentiles_need_ten_samples() -> None:
    monitor = PerformanceMonitor()
    for value in range(1, 10):
        monitor.record_metric("op", float(value))
    assert monitor.get_metrics("op").p95 is None

    for value in range(10, 21):
        monitor.record_metric("op", float(value))
    metric = monitor.get_metrics("op")
    assert metric.p95 == 19.0
    assert metric.p99 == 20.0


def test_raw_sample_buffer_is_bounded() -> None:
    monitor = PerformanceMonitor(MonitorConfig(buffer_size=10))
    for value in range(1, 16):
        monitor.record_metric("op", float(value))

    metric = monitor.get_metrics("op")
    assert metric.count == 15
    assert metric.min == 1.0
    # Percentiles only see the newest ten samples (6..15).
    assert metric.p95 == 15.0


def test_budget_violations_sorted_by_exceedance() -> None:
    monitor = PerformanceMonitor()
    monitor.record_metric("template-parsing", 150.0)
    monitor.record_metric("checklist-navigation", 30.0)
    monitor.record_metric("state-load", 10.0)

    violations = monitor.get_budget_violations()
    assert [v.operation for v in violations] == ["checklist-navigation", "template-parsing"]
    assert violations[0].exceedance == pytest.approx(200.0)
    assert violations[1].exceedance == pytest.approx(50.0)
    assert violations[1].severity == "critical"


def test_report_health_levels() -> None:
    monitor = PerformanceMonitor()
    monitor.record_metric("state-load", 5.0)
    assert monitor.generate_report().summary.overall_health == "HEALTHY"

    monitor.record_metric("checklist-navigation", 12.0)
    report = monitor.generate_report()
    assert report.summary.overall_health == "DEGRADED"
    assert report.summary.budget_violations == 1

    monitor.record_metric("state-save", 80.0)
    report = monitor.generate_report()
    assert report.summary.overall_health == "CRITICAL"
    assert report.summary.total_operations == 3
    assert report.summary.measurement_period.duration >= 0


def test_custom_budget_and_invalid_severity() -> None:
    monitor = PerformanceMonitor()
    monitor.set_budget("custom-op", 5.0, "critical")
    monitor.record_metric("custom-op", 6.0)
    assert monitor.get_budget_violations()[0].operation == "custom-op"

    with pytest.raises(ValueError):
        monitor.set_budget("custom-op", 5.0, "fatal")
    with pytest.raises(ValueError):
        monitor.set_budget("custom-op", 0)


def test_critical_budget_breach_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    monitor = PerformanceMonitor()
    with caplog.at_level(logging.WARNING, logger="perf_monitor.monitor"):
        monitor.record_metric("command-execution", 250.0)
        monitor.record_metric("search-operation", 70.0)

    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "command-execution" in warnings[0].getMessage()


def test_timer_and_measure_record_durations() -> None:
    monitor = PerformanceMonitor()
    stop = monitor.start_timer("op")
    stop()
    stop()
    with monitor.measure("op"):
        pass

    metric = monitor.get_metrics("op")
    assert metric.count == 2
    assert metric.min >= 0


def test_disabled_monitor_records_nothing() -> None:
    monitor = PerformanceMonitor(MonitorConfig(enabled=False))
    monitor.start_timer("op")()
    monitor.record_metric("op", 5.0)
    assert monitor.get_metrics("op") is None
    assert monitor.shutdown() is None

    monitor.set_enabled(True)
    monitor.record_metric("op", 5.0)
    assert monitor.get_metrics("op").count == 1


def test_clear_resets_metrics() -> None:
    monitor = PerformanceMonitor()
    monitor.record_metric("op", 5.0)
    monitor.clear()
    assert monitor.operations() == []
    assert monitor.generate_report().metrics == {}


def test_report_survives_json_file(tmp_path) -> None:
    monitor = PerformanceMonitor()
    for value in range(12):
        monitor.record_metric("template-parsing", 90.0 + value * 2)

    path = tmp_path / "report.json"
    path.write_text(json.dumps(monitor.generate_report().to_dict()), encoding="utf-8")
    loaded = PerformanceReport.from_dict(json.loads(path.read_text(encoding="utf-8")))

    metric = loaded.metrics["template-parsing"]
    assert metric.count == 12
    assert metric.max == 112.0
    assert metric.p95 is not None
    assert loaded.summary.overall_health == "CRITICAL"
    assert loaded.violations[0].operation == "template-parsing"


def test_report_from_dict_requires_metrics() -> None:
    with pytest.raises(ValueError):
        PerformanceReport.from_dict({"violations": []})


def test_monitor_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PERFORMANCE_MONITORING", "false")
    monkeypatch.setenv("PERFORMANCE_BUFFER_SIZE", "50")
    config = MonitorConfig.from_env()
    assert config.enabled is False
    assert config.buffer_size == 50

    monkeypatch.setenv("PERFORMANCE_BUFFER_SIZE", "nope")
    assert MonitorConfig.from_env().buffer_size == 1000


def test_global_monitor_roundtrip() -> None:
    previous = get_global_monitor()
    monitor = PerformanceMonitor()
    try:
        set_global_monitor(monitor)
        assert get_global_monitor() is monitor
    finally:
        set_global_monitor(previous)


def test_report_while_new_operations_are_recorded() -> None:
    monitor = PerformanceMonitor()
    done = threading.Event()
    failures: list[BaseException] = []

    def _read() -> None:
        while not done.is_set():
            try:
                monitor.generate_report()
                monitor.get_budget_violations()
            except RuntimeError as e:
                failures.append(e)
                return

    reader = threading.Thread(target=_read, daemon=True)
    reader.start()
    try:
        for i in range(20000):
            monitor.record_metric(f"op-{i}", 1.0)
    finally:
        done.set()
        reader.join(timeout=10)

    assert failures == []
    assert len(monitor.operations()) == 20000
