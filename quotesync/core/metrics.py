from __future__ import annotations

from functools import wraps
from threading import Lock
from time import perf_counter
from typing import Any, Callable

SYNCS_COMPLETED = "syncs_completed"
SYNCS_SKIPPED = "syncs_skipped"
SYNCS_FAILED = "syncs_failed"
CONFLICTS_DETECTED = "conflicts_detected"
CONFLICTS_RESOLVED = "conflicts_resolved"
SYNC_SESSION_LATENCY = "latency.sync_session_ms"
FETCH_LATENCY = "latency.fetch_ms"


class MetricsRegistry:
    """Contadores y tiempos en proceso de las sesiones de sincronización."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: dict[str, int] = {}
        self._timings: dict[str, list[float]] = {}

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def increment(self, name: str, value: int = 1) -> None:
        if value <= 0:
            return
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def record_timing(self, name: str, milliseconds: float) -> None:
        with self._lock:
            bucket = self._timings.setdefault(name, [])
            bucket.append(milliseconds)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            counters = dict(self._counters)
            timings = {name: list(values) for name, values in self._timings.items()}
        return {
            "counters": counters,
            "timings_ms": {name: _summarize(values) for name, values in timings.items()},
        }

    def sync_summary(self) -> dict[str, Any]:
        """Resumen por sesión: desenlaces, conflictos pendientes y latencias.

        ``conflicts_open`` son los conflictos detectados que aún no se han
        resuelto (sesiones aparcadas o abandonadas).
        """
        with self._lock:
            counters = dict(self._counters)
            session_timings = list(self._timings.get(SYNC_SESSION_LATENCY, ()))
            fetch_timings = list(self._timings.get(FETCH_LATENCY, ()))
        completed = counters.get(SYNCS_COMPLETED, 0)
        failed = counters.get(SYNCS_FAILED, 0)
        finished = completed + failed
        detected = counters.get(CONFLICTS_DETECTED, 0)
        resolved = counters.get(CONFLICTS_RESOLVED, 0)
        return {
            "sessions_completed": completed,
            "sessions_failed": failed,
            "triggers_skipped": counters.get(SYNCS_SKIPPED, 0),
            "success_ratio": round(completed / finished, 3) if finished else None,
            "conflicts_detected": detected,
            "conflicts_resolved": resolved,
            "conflicts_open": max(detected - resolved, 0),
            "session_ms": _summarize(session_timings),
            "fetch_ms": _summarize(fetch_timings),
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()


def _summarize(values: list[float]) -> dict[str, float]:
    return {
        "count": len(values),
        "last": values[-1] if values else 0.0,
        "avg": (sum(values) / len(values)) if values else 0.0,
        "max": max(values) if values else 0.0,
    }


metrics_registry = MetricsRegistry()


def measure_time(metric_name: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                elapsed_ms = (perf_counter() - start) * 1000
                metrics_registry.record_timing(metric_name, elapsed_ms)

        return wrapper

    return decorator
