from perf_monitor.bottleneck import (
    Bottleneck,
    BottleneckDetector,
    BottleneckThresholds,
    OperationProfile,
)
from perf_monitor.dashboard import (
    ConsoleRenderer,
    DashboardConfig,
    JsonRenderer,
    PerformanceDashboard,
    TableRenderer,
    create_summary,
    format_duration,
    format_memory,
    get_renderer,
    trend_arrow,
)
from perf_monitor.decorators import timed, timed_class, timed_function, with_timing
from perf_monitor.monitor import (
    DEFAULT_BUDGETS,
    Budget,
    BudgetViolation,
    MonitorConfig,
    OperationMetric,
    PerformanceMonitor,
    PerformanceReport,
    get_global_monitor,
    set_global_monitor,
)
from perf_monitor.profiler import MemoryAnalysis, PerformanceProfiler, ProfilerConfig
from perf_monitor.regression import (
    RegressionConfig,
    RegressionDetector,
    RegressionResult,
    TrendResult,
    render_regression_report,
)

__all__ = [
    "Bottleneck",
    "BottleneckDetector",
    "BottleneckThresholds",
    "Budget",
    "BudgetViolation",
    "ConsoleRenderer",
    "DEFAULT_BUDGETS",
    "DashboardConfig",
    "JsonRenderer",
    "MemoryAnalysis",
    "MonitorConfig",
    "OperationMetric",
    "OperationProfile",
    "PerformanceDashboard",
    "PerformanceMonitor",
    "PerformanceProfiler",
    "PerformanceReport",
    "ProfilerConfig",
    "RegressionConfig",
    "RegressionDetector",
    "RegressionResult",
    "TableRenderer",
    "TrendResult",
    "create_summary",
    "format_duration",
    "format_memory",
    "get_global_monitor",
    "get_renderer",
    "render_regression_report",
    "set_global_monitor",
    "timed",
    "timed_class",
    "timed_function",
    "trend_arrow",
    "with_timing",
]
