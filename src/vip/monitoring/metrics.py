"""
Metrics collection for Vulnerability Intelligence Pipeline
Provides Prometheus-compatible text export of in-process counters
"""
import time
import threading
from typing import Dict, Any, Optional, List
from collections import defaultdict
from functools import wraps
import logging

logger = logging.getLogger(__name__)


class _Metric:
    """Common label handling"""

    def __init__(self, name: str, description: str = "", labels: List[str] = None):
        self.name = name
        self.description = description
        self.labels = labels or []
        self._lock = threading.Lock()

    def _make_key(self, label_values: Dict[str, Any]) -> str:
        """Create key from label values"""
        if not self.labels:
            return ""

        for label in self.labels:
            if label not in label_values:
                raise ValueError(f"Missing required label: {label}")

        return ",".join(f'{k}="{v}"' for k, v in sorted(label_values.items()))


class Counter(_Metric):
    """Counter metric - only increases"""

    def __init__(self, name: str, description: str = "", labels: List[str] = None):
        super().__init__(name, description, labels)
        self._values: Dict[str, float] = defaultdict(float)

    def inc(self, amount: float = 1.0, **label_values):
        """Increment counter by amount"""
        with self._lock:
            self._values[self._make_key(label_values)] += amount

    def get(self, **label_values) -> float:
        """Get current counter value"""
        with self._lock:
            return self._values.get(self._make_key(label_values), 0.0)

    def reset(self):
        with self._lock:
            self._values.clear()


class Histogram(_Metric):
    """Histogram metric for measuring distributions"""

    def __init__(self, name: str, description: str = "",
                 buckets: List[float] = None, labels: List[str] = None):
        super().__init__(name, description, labels)
        self.buckets = buckets or [0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, float('inf')]
        self._values: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))

    def observe(self, value: float, **label_values):
        """Observe a value in the histogram"""
        with self._lock:
            entry = self._values[self._make_key(label_values)]
            entry['_count'] += 1
            entry['_sum'] += value
            for bucket in self.buckets:
                if value <= bucket:
                    entry[f"bucket_{bucket}"] += 1

    def get(self, **label_values) -> Dict[str, float]:
        """Get histogram values"""
        with self._lock:
            return dict(self._values.get(self._make_key(label_values), {}))

    def reset(self):
        with self._lock:
            self._values.clear()


class MetricsRegistry:
    """Centralized metrics registry"""

    def __init__(self):
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def register_counter(self, name: str, description: str = "", labels: List[str] = None) -> Counter:
        """Register a counter metric"""
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = Counter(name, description, labels)
            return self._metrics[name]

    def register_histogram(self, name: str, description: str = "",
                           buckets: List[float] = None, labels: List[str] = None) -> Histogram:
        """Register a histogram metric"""
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = Histogram(name, description, buckets, labels)
            return self._metrics[name]

    def get_metric(self, name: str) -> Optional[Any]:
        """Get a metric by name"""
        with self._lock:
            return self._metrics.get(name)

    def reset(self):
        """Zero every registered metric"""
        with self._lock:
            for metric in self._metrics.values():
                metric.reset()

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus format"""
        lines = []

        with self._lock:
            for name, metric in self._metrics.items():
                if metric.description:
                    lines.append(f"# HELP {name} {metric.description}")
                lines.append(f"# TYPE {name} {type(metric).__name__.lower()}")

                if isinstance(metric, Counter):
                    for key, value in metric._values.items():
                        lines.append(f"{name}{{{key}}} {value}" if key else f"{name} {value}")

                elif isinstance(metric, Histogram):
                    for key, values in metric._values.items():
                        sep = f",{key}" if key else ""
                        label_str = f"{{{key}}}" if key else ""
                        for bucket in metric.buckets:
                            le = "+Inf" if bucket == float('inf') else str(bucket)
                            count = values.get(f"bucket_{bucket}", 0)
                            lines.append(f'{name}_bucket{{le="{le}"{sep}}} {count}')
                        lines.append(f"{name}_count{label_str} {values.get('_count', 0)}")
                        lines.append(f"{name}_sum{label_str} {values.get('_sum', 0)}")

        return "\n".join(lines)


# Global metrics registry
metrics_registry = MetricsRegistry()


def get_pipeline_metrics() -> Dict[str, Any]:
    """Get predefined metrics for the pipeline"""
    return {
        'api_requests_total': metrics_registry.register_counter(
            "vip_api_requests_total", "Total number of API requests", ["api", "status"]),
        'api_request_duration': metrics_registry.register_histogram(
            "vip_api_request_duration_seconds", "API request duration in seconds", labels=["api"]),
        'retry_attempts_total': metrics_registry.register_counter(
            "vip_retry_attempts_total", "Retries scheduled after a transient failure", ["operation"]),
        'cache_hits_total': metrics_registry.register_counter(
            "vip_cache_hits_total", "Components served from the analysis cache", ["cache_type"]),
        'cache_misses_total': metrics_registry.register_counter(
            "vip_cache_misses_total", "Components needing a live analysis", ["cache_type"]),
        'feed_entries_total': metrics_registry.register_counter(
            "vip_feed_entries_total", "Feed entries delivered to the sink", ["source"]),
        'associations_total': metrics_registry.register_counter(
            "vip_associations_total", "Component to vulnerability associations written", ["analyzer"]),
    }


def track_api_metrics(api_name: str):
    """Decorator to track API call counts and durations"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            status = "success"
            try:
                return func(*args, **kwargs)
            except Exception:
                status = "error"
                raise
            finally:
                metrics = get_pipeline_metrics()
                metrics['api_requests_total'].inc(1, api=api_name, status=status)
                metrics['api_request_duration'].observe(time.time() - start_time, api=api_name)

        return wrapper
    return decorator


def record_retry_attempt(operation: str):
    """Record a scheduled retry"""
    get_pipeline_metrics()['retry_attempts_total'].inc(1, operation=operation)


def record_cache_hit(cache_type: str):
    """Record a cache hit"""
    get_pipeline_metrics()['cache_hits_total'].inc(1, cache_type=cache_type)


def record_cache_miss(cache_type: str):
    """Record a cache miss"""
    get_pipeline_metrics()['cache_misses_total'].inc(1, cache_type=cache_type)


def record_feed_entry(source: str):
    get_pipeline_metrics()['feed_entries_total'].inc(1, source=source)


def record_association(analyzer: str):
    get_pipeline_metrics()['associations_total'].inc(1, analyzer=analyzer)


def export_metrics() -> str:
    """Export all metrics in Prometheus format"""
    get_pipeline_metrics()
    return metrics_registry.export_prometheus()
