from __future__ import annotations

import io
import json
import logging

import pytest

from perf_monitor import (
    DashboardConfig,
    MonitorConfig,
    PerformanceDashboard,
    PerformanceMonitor,
    create_summary,
    format_duration,
    get_renderer,
    trend_arrow,
)


def test_format_duration_units() -> None:
    assert format_duration(0.5) == "500.00us"
    assert format_duration(12.5) == "12.50ms"
    assert format_duration(1500.0) == "1.50s"


def test_trend_arrow() -> None:
    assert trend_arrow(110.0, 100.0) == "↑"
    assert trend_arrow(90.0, 100.0) == "↓"
    assert trend_arrow(102.0, 100.0) == "→"
    assert trend_arrow(5.0, None) == ""
    assert trend_arrow(5.0, 0.0) == ""


def _monitor_with_data() -> PerformanceMonitor:
    monitor = PerformanceMonitor()
    monitor.record_metric("template-parsing", 150.0)
    monitor.record_metric("state-load", 5.0)
    return monitor


def test_console_renderer_lists_operations_and_violations() -> None:
    report = _monitor_with_data().generate_report()
    text = get_renderer("console").render(report)
    assert "Top Operations (by avg duration):" in text
    assert "template-parsing: 150.00ms avg" in text
    assert "Budget Violations:" in text
    assert "[critical]" in text
    assert text.index("template-parsing") < text.index("state-load")


def test_table_renderer_shows_trends() -> None:
    monitor = _monitor_with_data()
    previous = monitor.generate_report()
    monitor.record_metric("state-load", 25.0)
    text = get_renderer("table", show_trends=True).render(monitor.generate_report(), previous)
    assert "Operation" in text.splitlines()[2]
    assert "state-load ↑" in text
    assert "Exceedance" in text


def test_json_renderer_is_valid_json() -> None:
    report = _monitor_with_data().generate_report()
    payload = json.loads(get_renderer("json", max_items=1).render(report))
    assert payload["total_operations"] == 2
    assert payload["overall_health"] == "CRITICAL"
    assert [op["name"] for op in payload["top_operations"]] == ["template-parsing"]
    assert payload["violations"][0]["operation"] == "template-parsing"


def test_unknown_display_mode_rejected() -> None:
    with pytest.raises(ValueError):
        DashboardConfig(display_mode="fancy")
    with pytest.raises(ValueError):
        get_renderer("fancy")


def test_display_report_alerts_only_on_new_violations(caplog: pytest.LogCaptureFixture) -> None:
    monitor = _monitor_with_data()
    stream = io.StringIO()
    dashboard = PerformanceDashboard(monitor, DashboardConfig(), stream=stream)

    with caplog.at_level(logging.WARNING, logger="perf_monitor.dashboard"):
        dashboard.display_report()
        dashboard.display_report()
        monitor.record_metric("checklist-navigation", 50.0)
        dashboard.display_report()

    alerts = [r for r in caplog.records if r.name == "perf_monitor.dashboard"]
    assert [r.levelno for r in alerts] == [logging.ERROR, logging.WARNING]
    assert "template-parsing" in alerts[0].getMessage()
    assert "checklist-navigation" in alerts[1].getMessage()
    assert stream.getvalue().count("Performance Dashboard") == 3


def test_display_report_skips_empty_and_disabled() -> None:
    stream = io.StringIO()
    dashboard = PerformanceDashboard(PerformanceMonitor(), stream=stream)
    dashboard.display_report()
    assert stream.getvalue() == ""

    disabled = PerformanceDashboard(
        PerformanceMonitor(MonitorConfig(enabled=False)), stream=stream
    )
    assert disabled.display_report() is None
    assert disabled.start() is False


def test_create_summary() -> None:
    assert create_summary(PerformanceMonitor().generate_report()) == (
        "No performance metrics available"
    )

    dashboard = PerformanceDashboard(_monitor_with_data(), stream=io.StringIO())
    summary = dashboard.create_summary()
    assert "Overall health: CRITICAL" in summary
    assert "template-parsing: 150.00ms" in summary
    assert "+50.0%" in summary


def test_start_and_stop_background_refresh() -> None:
    stream = io.StringIO()
    dashboard = PerformanceDashboard(
        _monitor_with_data(),
        DashboardConfig(refresh_interval=0.01, alert_on_violations=False),
        stream=stream,
    )
    assert dashboard.start() is True
    assert dashboard.running
    dashboard.stop()
    assert not dashboard.running
    assert "Performance Dashboard" in stream.getvalue()

    assert PerformanceDashboard(
        _monitor_with_data(), DashboardConfig(enabled=False), stream=stream
    ).start() is False


def test_dashboard_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DASHBOARD_REFRESH_INTERVAL", "2500")
    monkeypatch.setenv("DASHBOARD_DISPLAY_MODE", "table")
    monkeypatch.setenv("DASHBOARD_SHOW_TRENDS", "true")
    monkeypatch.setenv("DASHBOARD_ALERT_ON_VIOLATIONS", "false")
    config = DashboardConfig.from_env()
    assert config.refresh_interval == 2.5
    assert config.display_mode == "table"
    assert config.show_trends is True
    assert config.alert_on_violations is False
    assert config.max_display_items == 20
