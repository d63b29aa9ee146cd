"""Metrics and observability module."""

from autodev.metrics.observability import MetricPoint, MetricsCollector, MetricType, SessionMetrics

__all__ = ["MetricPoint", "MetricsCollector", "MetricType", "SessionMetrics"]
