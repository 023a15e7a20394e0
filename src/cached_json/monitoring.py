"""Performance monitoring for fragment caching and rendering.

The monitor aggregates in-process telemetry so the cache manager and the
engine can record lightweight events without embedding aggregation logic.
No external backend is required.

Collected domains:
        * Cache performance (hits, misses, hit ratio, store errors, invalidations)
        * Render latency and error counts per class
        * Recent errors (fixed-size deque for debugging / introspection)

Example::

        from cached_json.monitoring import get_monitor
        monitor = get_monitor()
        monitor.record_cache_hit(0.0002)
        monitor.record_render("app.models.Person", 0.004)
        print(monitor.get_cache_analytics()["performance"]["hit_rate_percent"])

Lifecycle integration:
        * Initialization is lazy via :func:`get_monitor` or explicit via
            :func:`initialize_monitor`.
        * Reset with :meth:`PerformanceMonitor.reset_metrics` in tests to get clean
            baselines.
"""

from __future__ import annotations

import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class CacheMetrics:
    """Aggregate fragment cache metrics.

    Attributes:
        hits: Fragments served from the store.
        misses: Fragments that had to be rendered.
        store_errors: Failed store operations (read, write or delete).
        invalidations: Identities invalidated.
        total_requests: hits + misses.
        hit_rate: Rolling hit ratio (0..1).
        average_response_time: Mean lookup time in seconds.
    """

    hits: int = 0
    misses: int = 0
    store_errors: int = 0
    invalidations: int = 0
    total_requests: int = 0
    hit_rate: float = 0.0
    average_response_time: float = 0.0


@dataclass
class RenderMetrics:
    """Aggregated render metrics for one class."""

    total_renders: int = 0
    total_render_time: float = 0.0
    average_render_time: float = 0.0
    error_count: int = 0
    last_rendered: Optional[datetime] = None
    render_times: deque = field(default_factory=lambda: deque(maxlen=100))


class PerformanceMonitor:
    """Central coordinator for recording and querying metrics.

    Recording methods are thread-safe; summary methods return JSON-ready
    dictionaries.
    """

    def __init__(self, enable_detailed_tracking: bool = True):
        """Initialize performance monitor.

        Args:
            enable_detailed_tracking: If False, skips the per-class latency deque.
        """
        self.enable_detailed_tracking = enable_detailed_tracking
        self.start_time = datetime.now()
        self._lock = threading.RLock()
        self.cache_metrics = CacheMetrics()
        self.render_metrics: Dict[str, RenderMetrics] = defaultdict(RenderMetrics)
        self.recent_errors: deque = deque(maxlen=100)

    def record_cache_hit(self, response_time: float = 0.0) -> None:
        with self._lock:
            self.cache_metrics.hits += 1
            self.cache_metrics.total_requests += 1
            self._update_cache_metrics(response_time)

    def record_cache_miss(self, response_time: float = 0.0) -> None:
        with self._lock:
            self.cache_metrics.misses += 1
            self.cache_metrics.total_requests += 1
            self._update_cache_metrics(response_time)

    def record_store_error(self, operation: str, key: Optional[str] = None) -> None:
        """Record a failed store operation (``get``, ``set`` or ``delete``)."""
        with self._lock:
            self.cache_metrics.store_errors += 1
            self.recent_errors.append(
                {
                    "kind": "store",
                    "operation": operation,
                    "key": key,
                    "timestamp": datetime.now().isoformat(),
                }
            )

    def record_invalidation(self) -> None:
        with self._lock:
            self.cache_metrics.invalidations += 1

    def _update_cache_metrics(self, response_time: float) -> None:
        """Update derived cache metrics (hit rate, average response time)."""
        total = self.cache_metrics.total_requests
        if total > 0:
            self.cache_metrics.hit_rate = self.cache_metrics.hits / total

        if response_time > 0:
            current_avg = self.cache_metrics.average_response_time
            self.cache_metrics.average_response_time = (
                current_avg * (total - 1) + response_time
            ) / total

    def record_render(self, class_name: str, render_time: float, error: Optional[str] = None) -> None:
        """Record one top-level render of an instance of ``class_name``.

        Args:
            class_name: Class key of the rendered instance.
            render_time: Seconds spent composing the instance.
            error: Error code when the render failed.
        """
        with self._lock:
            metrics = self.render_metrics[class_name]
            metrics.total_renders += 1
            metrics.total_render_time += render_time
            metrics.average_render_time = metrics.total_render_time / metrics.total_renders
            metrics.last_rendered = datetime.now()

            if self.enable_detailed_tracking:
                metrics.render_times.append(render_time)

            if error is not None:
                metrics.error_count += 1
                self.recent_errors.append(
                    {
                        "kind": "render",
                        "class_name": class_name,
                        "code": error,
                        "timestamp": datetime.now().isoformat(),
                    }
                )

    def get_performance_summary(self) -> Dict[str, Any]:
        """Return a consolidated cache + render snapshot."""
        with self._lock:
            slowest = sorted(
                self.render_metrics.items(),
                key=lambda x: x[1].average_render_time,
                reverse=True,
            )[:5]
            return {
                "timestamp": datetime.now().isoformat(),
                "uptime_seconds": round((datetime.now() - self.start_time).total_seconds(), 2),
                "cache": {
                    "hit_rate": round(self.cache_metrics.hit_rate * 100, 2),
                    "total_requests": self.cache_metrics.total_requests,
                    "hits": self.cache_metrics.hits,
                    "misses": self.cache_metrics.misses,
                    "store_errors": self.cache_metrics.store_errors,
                    "invalidations": self.cache_metrics.invalidations,
                    "average_response_time_ms": round(
                        self.cache_metrics.average_response_time * 1000, 2
                    ),
                },
                "renders": {
                    "total_renders": sum(m.total_renders for m in self.render_metrics.values()),
                    "total_errors": sum(m.error_count for m in self.render_metrics.values()),
                    "slowest_classes": [
                        {
                            "class_name": class_name,
                            "avg_render_time_ms": round(metrics.average_render_time * 1000, 2),
                            "total_renders": metrics.total_renders,
                        }
                        for class_name, metrics in slowest
                    ],
                },
                "errors": {
                    "total_recent_errors": len(self.recent_errors),
                    "recent": list(self.recent_errors)[-20:],
                },
            }

    def get_cache_analytics(self) -> Dict[str, Any]:
        """Return cache analytics and tuning recommendations."""
        with self._lock:
            hit_rate = self.cache_metrics.hit_rate
            return {
                "performance": {
                    "hit_rate_percent": round(hit_rate * 100, 2),
                    "miss_rate_percent": round((1 - hit_rate) * 100, 2),
                    "average_response_time_ms": round(
                        self.cache_metrics.average_response_time * 1000, 2
                    ),
                    "cache_efficiency": (
                        "excellent"
                        if hit_rate > 0.9
                        else "good" if hit_rate > 0.8 else "fair" if hit_rate > 0.6 else "poor"
                    ),
                },
                "usage": {
                    "total_requests": self.cache_metrics.total_requests,
                    "cache_hits": self.cache_metrics.hits,
                    "cache_misses": self.cache_metrics.misses,
                    "store_errors": self.cache_metrics.store_errors,
                    "invalidations": self.cache_metrics.invalidations,
                },
                "recommendations": self._get_cache_recommendations(),
            }

    def _get_cache_recommendations(self) -> List[str]:
        recommendations = []

        if self.cache_metrics.total_requests and self.cache_metrics.hit_rate < 0.8:
            recommendations.append(
                "Fragment hit rate is below 80%. Check invalidation frequency or TTL."
            )

        if self.cache_metrics.store_errors:
            recommendations.append(
                "Cache store errors detected. Check the store backend health."
            )

        if self.cache_metrics.average_response_time > 0.010:  # 10ms
            recommendations.append(
                "Average fragment lookup time is above 10ms. Check store latency."
            )

        if not recommendations:
            recommendations.append("Cache performance is optimal. No changes recommended.")

        return recommendations

    def reset_metrics(self) -> None:
        """Reset all counters (primarily for tests)."""
        with self._lock:
            self.cache_metrics = CacheMetrics()
            self.render_metrics.clear()
            self.recent_errors.clear()
            self.start_time = datetime.now()


# Global performance monitor instance
_monitor: Optional[PerformanceMonitor] = None


def get_monitor() -> PerformanceMonitor:
    """Return (and lazily initialize) the process-wide monitor."""
    global _monitor
    if _monitor is None:
        _monitor = PerformanceMonitor()
    return _monitor


def initialize_monitor(enable_detailed_tracking: bool = True) -> PerformanceMonitor:
    """Force (re-)initialization of the global monitor."""
    global _monitor
    _monitor = PerformanceMonitor(enable_detailed_tracking)
    return _monitor
