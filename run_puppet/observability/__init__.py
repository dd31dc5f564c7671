"""
Observability Module — Run metrics and step tracing.
"""

from .metrics import Counter, Gauge, Histogram, MetricsRegistry
from .tracing import TRACER_NAME, get_tracer, new_tracer_provider

__all__ = [
    "MetricsRegistry",
    "Counter",
    "Gauge",
    "Histogram",
    "TRACER_NAME",
    "get_tracer",
    "new_tracer_provider",
]
