from __future__ import annotations

import functools
import inspect
import weakref
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from perf_monitor.monitor import SEVERITY_WARNING, PerformanceMonitor, get_global_monitor

F = TypeVar("F", bound=Callable[..., Any])
C = TypeVar("C", bound=type)


def _resolve_monitor(monitor: PerformanceMonitor | None) -> PerformanceMonitor | None:
    return monitor if monitor is not None else get_global_monitor()


def _operation_name(
    fn: Callable[..., Any],
    *,
    operation_name: str | None,
    include_class_name: bool,
    owner: str | None = None,
) -> str:
    if operation_name:
        return operation_name
    name = getattr(fn, "__name__", "anonymous")
    if not include_class_name:
        return name
    if owner is None:
        # "Outer.<locals>.fn" is a nested function, not a method.
        parts = getattr(fn, "__qualname__", name).split(".")
        owner = parts[-2] if len(parts) >= 2 and parts[-2] != "<locals>" else None
    return f"{owner}.{name}" if owner else name


def timed(
    budget_ms: float | None = None,
    severity: str = SEVERITY_WARNING,
    operation_name: str | None = None,
    include_class_name: bool = True,
    monitor: PerformanceMonitor | None = None,
    *,
    _owner: str | None = None,
) -> Callable[[F], F]:
    """
    Decorator recording the wall time of each call.

    Works for plain and `async def` callables. The duration is recorded even
    when the call raises. When no monitor is available (none passed and no
    global monitor set) or monitoring is disabled, the call goes straight
    through.
    """

    def decorate(fn: F) -> F:
        name = _operation_name(
            fn,
            operation_name=operation_name,
            include_class_name=include_class_name,
            owner=_owner,
        )
        budget_registered: weakref.WeakSet[PerformanceMonitor] = weakref.WeakSet()

        def _active() -> PerformanceMonitor | None:
            active = _resolve_monitor(monitor)
            if active is None or not active.is_enabled():
                return None
            if budget_ms is not None and active not in budget_registered:
                active.set_budget(name, budget_ms, severity)
                budget_registered.add(active)
            return active

        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                active = _active()
                if active is None:
                    return await fn(*args, **kwargs)
                stop = active.start_timer(name)
                try:
                    return await fn(*args, **kwargs)
                finally:
                    stop()

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            active = _active()
            if active is None:
                return fn(*args, **kwargs)
            stop = active.start_timer(name)
            try:
                return fn(*args, **kwargs)
            finally:
                stop()

        return wrapper  # type: ignore[return-value]

    return decorate


def timed_class(
    budget_ms: float | None = None,
    severity: str = SEVERITY_WARNING,
    include_class_name: bool = True,
    monitor: PerformanceMonitor | None = None,
) -> Callable[[C], C]:
    """Apply `timed` to every public method defined on the class."""

    def decorate(cls: C) -> C:
        for attr, value in list(vars(cls).items()):
            if attr.startswith("_"):
                continue
            if isinstance(value, (staticmethod, classmethod)):
                wrapped = timed(
                    budget_ms,
                    severity,
                    None,
                    include_class_name,
                    monitor,
                    _owner=cls.__name__,
                )(value.__func__)
                setattr(cls, attr, type(value)(wrapped))
                continue
            if not inspect.isfunction(value):
                continue
            setattr(
                cls,
                attr,
                timed(
                    budget_ms,
                    severity,
                    None,
                    include_class_name,
                    monitor,
                    _owner=cls.__name__,
                )(value),
            )
        return cls

    return decorate


@contextmanager
def with_timing(
    operation: str,
    *,
    budget_ms: float | None = None,
    severity: str = SEVERITY_WARNING,
    monitor: PerformanceMonitor | None = None,
) -> Iterator[None]:
    active = _resolve_monitor(monitor)
    if active is None or not active.is_enabled():
        yield
        return
    if budget_ms is not None:
        active.set_budget(operation, budget_ms, severity)
    with active.measure(operation):
        yield


def timed_function(
    operation: str,
    fn: F,
    *,
    budget_ms: float | None = None,
    severity: str = SEVERITY_WARNING,
    monitor: PerformanceMonitor | None = None,
) -> F:
    return timed(budget_ms, severity, operation, False, monitor)(fn)
