"""Pipeline event emission and metrics.

Event Emitters:
- EventEmitter: Abstract base class for event emission
- LoggingEventEmitter: Emits events as structured log entries
- CompositeEventEmitter: Emits to multiple sinks simultaneously
- MetricsEventEmitter: Emits events as Prometheus metrics
- NullEventEmitter: Discards events (for testing)

Metrics:
- PipelineMetrics: Container for all Prometheus metrics
- get_metrics: Get or create the metrics instance
- generate_metrics_output: Generate Prometheus format output for /metrics
"""

from src.autopr.events.emitter import (
    CompositeEventEmitter,
    EventEmitter,
    LoggingEventEmitter,
    NullEventEmitter,
)
from src.autopr.events.metrics import (
    MetricsEventEmitter,
    PipelineMetrics,
    generate_metrics_output,
    get_metrics,
)
from src.autopr.events.models import EventType, PipelineEvent

__all__ = [
    # Event models
    "EventType",
    "PipelineEvent",
    # Event emitters
    "EventEmitter",
    "LoggingEventEmitter",
    "CompositeEventEmitter",
    "MetricsEventEmitter",
    "NullEventEmitter",
    # Metrics
    "PipelineMetrics",
    "get_metrics",
    "generate_metrics_output",
]
