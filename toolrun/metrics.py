"""
Execution metrics for toolrun.

Per-tool statistics (counts, timeouts, durations with percentiles over a
bounded window) are always kept in memory. When Prometheus export is enabled
the same events are mirrored into prometheus_client collectors registered once
per process on the default registry.

Usage:
    from toolrun.metrics import MetricsManager

    manager = MetricsManager.get()
    manager.record_execution("magick", success=True, execution_time=0.42)
    stats = manager.get_tool_stats("magick")
    text = manager.get_prometheus_metrics()

Testing:
    MetricsManager.reset_for_testing()
"""
import bisect
import json
import logging
import math
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, generate_latest

log = logging.getLogger(__name__)

_PERCENTILE_WINDOW = 1000


class PrometheusRegistry:
    """Process-wide prometheus_client collectors, created on first use."""
    _lock = threading.Lock()
    _collectors: Dict[str, Any] = {}

    def __init__(self, registry=REGISTRY):
        self.registry = registry
        self.available = False
        self.execution_counter = None
        self.execution_histogram = None
        self.active_gauge = None
        self.timeout_counter = None

    def initialize(self) -> "PrometheusRegistry":
        with self._lock:
            try:
                self.execution_counter = self._get_or_create(
                    Counter, "toolrun_execution_total",
                    "Total command executions", ["tool", "status"],
                )
                self.execution_histogram = self._get_or_create(
                    Histogram, "toolrun_execution_seconds",
                    "Command execution time in seconds", ["tool"],
                )
                self.active_gauge = self._get_or_create(
                    Gauge, "toolrun_active_executions",
                    "Currently running command executions", ["tool"],
                )
                self.timeout_counter = self._get_or_create(
                    Counter, "toolrun_timeouts_total",
                    "Command executions killed on timeout", ["tool"],
                )
                self.available = True
                log.debug("prometheus.initialized collectors=%d", len(self._collectors))
            except ValueError as e:
                # Collector names already claimed by another registration.
                self.available = False
                log.error("prometheus.initialization_failed error=%s", str(e))
        return self

    def _get_or_create(self, kind, name: str, doc: str, labels: List[str]):
        key = f"{id(self.registry)}:{name}"
        collector = self._collectors.get(key)
        if collector is None:
            collector = kind(name, doc, labels, registry=self.registry)
            self._collectors[key] = collector
        return collector

    def export(self) -> str:
        return generate_latest(self.registry).decode("utf-8")


def sanitize_metric_value(value: Any, name: str = "value") -> float:
    """Coerce to a finite, non-negative float."""
    if value is None:
        log.warning("metrics.null_value name=%s defaulting_to_zero", name)
        return 0.0
    try:
        value = float(value)
    except (TypeError, ValueError) as e:
        log.warning("metrics.invalid_value name=%s value=%s error=%s defaulting_to_zero",
                    name, value, str(e))
        return 0.0
    if math.isnan(value) or math.isinf(value):
        log.warning("metrics.non_finite_value name=%s defaulting_to_zero", name)
        return 0.0
    if value < 0:
        log.warning("metrics.negative_value name=%s value=%f using_absolute", name, value)
        return abs(value)
    return value


@dataclass
class ToolExecutionMetrics:
    """Thread-safe execution statistics for one tool."""
    tool_name: str
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    execution_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    timeout_count: int = 0
    total_execution_time: float = 0.0
    min_execution_time: float = float("inf")
    max_execution_time: float = 0.0
    last_execution_time: Optional[datetime] = None
    recent_executions: deque = field(default_factory=lambda: deque(maxlen=100))
    _sorted_times: List[float] = field(default_factory=list, init=False, repr=False)

    def record_execution(self, success: bool, execution_time: float,
                         timed_out: bool = False, error_type: Optional[str] = None):
        with self._lock:
            execution_time = sanitize_metric_value(execution_time, "execution_time")
            self.execution_count += 1
            self.total_execution_time += execution_time
            self.min_execution_time = min(self.min_execution_time, execution_time)
            self.max_execution_time = max(self.max_execution_time, execution_time)
            self.last_execution_time = datetime.now()

            if success:
                self.success_count += 1
            else:
                self.failure_count += 1
            if timed_out:
                self.timeout_count += 1

            self.recent_executions.append({
                "timestamp": self.last_execution_time,
                "success": success,
                "execution_time": execution_time,
                "timed_out": timed_out,
                "error_type": error_type,
            })

            bisect.insort(self._sorted_times, execution_time)
            if len(self._sorted_times) > _PERCENTILE_WINDOW:
                self._sorted_times = self._sorted_times[-_PERCENTILE_WINDOW:]

    def _percentile(self, percentile: float) -> float:
        if not self._sorted_times:
            return 0.0
        percentile = max(0.0, min(100.0, percentile))
        index = int(len(self._sorted_times) * (percentile / 100.0))
        index = max(0, min(index, len(self._sorted_times) - 1))
        return self._sorted_times[index]

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            if self.execution_count == 0:
                return {
                    "tool_name": self.tool_name,
                    "execution_count": 0,
                    "success_rate": 0.0,
                    "average_execution_time": 0.0,
                    "min_execution_time": 0.0,
                    "max_execution_time": 0.0,
                    "p50_execution_time": 0.0,
                    "p95_execution_time": 0.0,
                    "p99_execution_time": 0.0,
                }
            recent_failures = sum(1 for e in self.recent_executions if not e["success"])
            return {
                "tool_name": self.tool_name,
                "execution_count": self.execution_count,
                "success_count": self.success_count,
                "failure_count": self.failure_count,
                "timeout_count": self.timeout_count,
                "success_rate": round(self.success_count / self.execution_count * 100, 2),
                "average_execution_time": round(self.total_execution_time / self.execution_count, 4),
                "min_execution_time": round(self.min_execution_time, 4),
                "max_execution_time": round(self.max_execution_time, 4),
                "p50_execution_time": round(self._percentile(50), 4),
                "p95_execution_time": round(self._percentile(95), 4),
                "p99_execution_time": round(self._percentile(99), 4),
                "last_execution_time": self.last_execution_time.isoformat(),
                "recent_failure_rate": round(recent_failures / len(self.recent_executions) * 100, 2),
            }


class ToolMetrics:
    """Per-tool statistics plus their Prometheus mirror."""

    def __init__(self, tool_name: str, prometheus: Optional[PrometheusRegistry] = None):
        self.tool_name = tool_name
        self.metrics = ToolExecutionMetrics(tool_name)
        self._prometheus = prometheus if prometheus is not None and prometheus.available else None
        self._active_count = 0
        self._lock = threading.Lock()

    def record_execution(self, success: bool, execution_time: float,
                         timed_out: bool = False, error_type: Optional[str] = None):
        execution_time = sanitize_metric_value(execution_time, f"{self.tool_name}.execution_time")
        self.metrics.record_execution(success, execution_time, timed_out, error_type)

        if self._prometheus is not None:
            status = "success" if success else ("timeout" if timed_out else "failure")
            self._prometheus.execution_counter.labels(tool=self.tool_name, status=status).inc()
            self._prometheus.execution_histogram.labels(tool=self.tool_name).observe(execution_time)
            if timed_out:
                self._prometheus.timeout_counter.labels(tool=self.tool_name).inc()

    def increment_active(self):
        with self._lock:
            self._active_count += 1
            if self._prometheus is not None:
                self._prometheus.active_gauge.labels(tool=self.tool_name).inc()

    def decrement_active(self):
        with self._lock:
            self._active_count = max(0, self._active_count - 1)
            if self._prometheus is not None:
                self._prometheus.active_gauge.labels(tool=self.tool_name).dec()

    def get_active_count(self) -> int:
        with self._lock:
            return self._active_count

    def get_stats(self) -> Dict[str, Any]:
        stats = self.metrics.get_stats()
        stats["active_executions"] = self.get_active_count()
        return stats


class MetricsManager:
    """
    Process-wide metrics accessor.

    ``MetricsManager.get()`` returns the shared instance; tests construct their
    own or call ``reset_for_testing()``.
    """

    _instance: Optional["MetricsManager"] = None
    _lock = threading.Lock()

    def __init__(self, max_tools: int = 1000, prometheus_enabled: bool = True):
        self.max_tools = max(10, min(max_tools, 10000))
        self.prometheus = PrometheusRegistry().initialize() if prometheus_enabled else None
        self.tool_metrics: Dict[str, ToolMetrics] = {}
        self.start_time = datetime.now()
        self.execution_count = 0
        self.error_count = 0
        self._metrics_lock = threading.Lock()
        log.debug("metrics_manager.initialized max_tools=%d prometheus=%s",
                  self.max_tools, self.prometheus_available)

    @classmethod
    def get(cls, max_tools: int = 1000, prometheus_enabled: bool = True) -> "MetricsManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls(max_tools, prometheus_enabled)
            return cls._instance

    @classmethod
    def reset_for_testing(cls):
        with cls._lock:
            cls._instance = None
        log.debug("metrics_manager.reset_for_testing")

    @property
    def prometheus_available(self) -> bool:
        return self.prometheus is not None and self.prometheus.available

    def reset(self):
        with self._metrics_lock:
            self.tool_metrics.clear()
            self.execution_count = 0
            self.error_count = 0

    def get_tool_metrics(self, tool_name: str) -> ToolMetrics:
        with self._metrics_lock:
            if tool_name not in self.tool_metrics:
                if len(self.tool_metrics) >= self.max_tools:
                    self._evict_oldest_metrics()
                self.tool_metrics[tool_name] = ToolMetrics(tool_name, self.prometheus)
                log.debug("metrics.tool_created name=%s total_tools=%d",
                          tool_name, len(self.tool_metrics))
            return self.tool_metrics[tool_name]

    def _evict_oldest_metrics(self):
        oldest_name = None
        oldest_time = datetime.max
        for name, metrics in self.tool_metrics.items():
            last_time = metrics.metrics.last_execution_time or datetime.min
            if last_time < oldest_time:
                oldest_time = last_time
                oldest_name = name
        if oldest_name is not None:
            del self.tool_metrics[oldest_name]
            log.info("metrics.evicted tool=%s remaining=%d", oldest_name, len(self.tool_metrics))

    def record_execution(self, tool_name: str, success: bool = True,
                         execution_time: float = 0.0, timed_out: bool = False,
                         error_type: Optional[str] = None):
        """
        Record one finished execution.

        Args:
            tool_name: Tool (or executable) name used as the metric label
            success: Whether the normalized status was zero
            execution_time: Wall-clock duration in seconds
            timed_out: Whether the process was killed on timeout
            error_type: ErrorType value for failures
        """
        self.get_tool_metrics(tool_name).record_execution(
            success, execution_time, timed_out, error_type
        )
        with self._metrics_lock:
            self.execution_count += 1
            if not success:
                self.error_count += 1

    def get_tool_stats(self, tool_name: str) -> Dict[str, Any]:
        if tool_name in self.tool_metrics:
            return self.tool_metrics[tool_name].get_stats()
        return {
            "tool_name": tool_name,
            "execution_count": 0,
            "message": "No metrics available for this tool",
        }

    def get_system_stats(self) -> Dict[str, Any]:
        uptime = (datetime.now() - self.start_time).total_seconds()
        error_rate = (self.error_count / self.execution_count * 100) if self.execution_count else 0
        return {
            "uptime_seconds": round(uptime, 2),
            "execution_count": self.execution_count,
            "error_count": self.error_count,
            "error_rate": round(error_rate, 2),
            "start_time": self.start_time.isoformat(),
        }

    def get_all_stats(self) -> Dict[str, Any]:
        return {
            "system": self.get_system_stats(),
            "tools": {name: m.get_stats() for name, m in self.tool_metrics.items()},
            "prometheus_available": self.prometheus_available,
            "total_tools_tracked": len(self.tool_metrics),
            "max_tools": self.max_tools,
        }

    def get_prometheus_metrics(self) -> Optional[str]:
        """Prometheus text exposition, or None when export is disabled."""
        if not self.prometheus_available:
            return None
        return self.prometheus.export()

    def export_json(self, pretty: bool = True) -> str:
        return json.dumps(self.get_all_stats(), indent=2 if pretty else None, default=str)
