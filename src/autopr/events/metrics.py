"""Prometheus metrics for pipeline observability.

Metrics are exposed at the `/metrics` endpoint in Prometheus text format.

Metrics Defined:
- autopr_runs_total: Counter of finished runs, by result
- autopr_run_failures_total: Counter of failed runs, by stage reached
- autopr_run_duration_seconds: Histogram of run duration
- autopr_runs_by_stage: Gauge of in-flight runs per stage

The MetricsEventEmitter updates these from pipeline events.
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from src.autopr.events.emitter import EventEmitter
from src.autopr.events.models import EventType, PipelineEvent
from src.autopr.state.models import STAGE_ORDER, TERMINAL_STAGES


logger = logging.getLogger(__name__)


# Runs take from seconds (rejections) to many minutes (large repositories)
DEFAULT_DURATION_BUCKETS = (
    1.0,
    5.0,
    10.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    900.0,
    1800.0,
)

# Gauge tracks in-flight runs, so only non-terminal stages
GAUGE_STAGES = tuple(s.value for s in STAGE_ORDER if s not in TERMINAL_STAGES)


class PipelineMetrics:
    """Container for all pipeline Prometheus metrics.

    Attributes:
        registry: The Prometheus registry for these metrics.
        runs_total: Counter of finished runs, labelled by result.
        run_failures_total: Counter of failed runs, labelled by stage.
        run_duration_seconds: Histogram of run duration.
        runs_by_stage: Gauge of in-flight runs per stage.

    Example:
        >>> metrics = PipelineMetrics(registry=CollectorRegistry())
        >>> metrics.record_run_finished("completed", duration_seconds=42.0)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize pipeline metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.runs_total = Counter(
            "autopr_runs_total",
            "Total number of pipeline runs finished",
            labelnames=["result"],
            registry=self.registry,
        )

        self.run_failures_total = Counter(
            "autopr_run_failures_total",
            "Total number of pipeline runs that ended in error",
            labelnames=["stage"],
            registry=self.registry,
        )

        self.run_duration_seconds = Histogram(
            "autopr_run_duration_seconds",
            "Time from run start to its terminal stage in seconds",
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.runs_by_stage = Gauge(
            "autopr_runs_by_stage",
            "Current number of runs in each pipeline stage",
            labelnames=["stage"],
            registry=self.registry,
        )

        for stage in GAUGE_STAGES:
            self.runs_by_stage.labels(stage=stage).set(0)

    def record_run_finished(
        self,
        result: str,
        duration_seconds: Optional[float] = None,
    ) -> None:
        self.runs_total.labels(result=result).inc()
        if duration_seconds is not None:
            self.run_duration_seconds.observe(duration_seconds)

    def record_run_failed(self, stage: str) -> None:
        self.run_failures_total.labels(stage=stage).inc()

    def update_stage_count(self, stage: str, delta: int) -> None:
        """Adjust the in-flight count for a stage, never below zero."""
        if stage in GAUGE_STAGES:
            current = self.runs_by_stage.labels(stage=stage)._value.get()
            self.runs_by_stage.labels(stage=stage).set(max(0, current + delta))


_default_metrics: Optional[PipelineMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> PipelineMetrics:
    """Get the metrics instance for the default registry, or a new one for
    a custom registry.

    Metrics can only be registered once per registry, so the default
    registry's instance is shared.
    """
    global _default_metrics

    if registry is not None:
        return PipelineMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = PipelineMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus text output for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    - STATE_TRANSITION: moves a run between stage gauges
    - COMPLETION / REJECTION / ERROR: counts the finished run, records its
      duration and releases its stage gauge
    """

    def __init__(
        self,
        metrics: Optional[PipelineMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        self._metrics = metrics if metrics is not None else get_metrics(registry)

    @property
    def metrics(self) -> PipelineMetrics:
        return self._metrics

    async def emit(self, event: PipelineEvent) -> None:
        try:
            if event.event_type == EventType.STATE_TRANSITION:
                self._handle_state_transition(event)
            elif event.event_type == EventType.COMPLETION:
                self._handle_finished(event, "completed")
            elif event.event_type == EventType.REJECTION:
                self._handle_finished(event, "rejected")
            elif event.event_type == EventType.ERROR:
                self._handle_finished(event, "error")
                self._metrics.record_run_failed(event.details.get("stage", "unknown"))
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={"event_type": event.event_type.value, "request_id": event.request_id},
            )

    def _handle_state_transition(self, event: PipelineEvent) -> None:
        from_stage = event.details.get("from_stage")
        to_stage = event.details.get("to_stage")

        if from_stage:
            self._metrics.update_stage_count(from_stage, -1)
        if to_stage:
            self._metrics.update_stage_count(to_stage, +1)

    def _handle_finished(self, event: PipelineEvent, result: str) -> None:
        stage = event.details.get("stage")
        if stage:
            self._metrics.update_stage_count(stage, -1)

        duration = event.details.get("duration_seconds")
        self._metrics.record_run_finished(
            result,
            duration_seconds=float(duration) if duration is not None else None,
        )
