"""
Billing metrics.

The manager operates in two modes:
1. No-op mode: every metric exists for API compatibility but does nothing
2. Active mode: Prometheus counters and histograms in a dedicated registry
"""

import time
import typing as t
from contextlib import contextmanager


class MetricsManager:
    """Central manager for billing metrics."""

    def __init__(self, enabled: bool = False):
        """
        Initialize the metrics manager.

        Args:
            enabled: Whether metrics collection is active
        """
        self.enabled = enabled
        self.registry = None
        self._initialize_metrics()

    def _initialize_metrics(self) -> None:
        """Initialize metric objects based on enabled state."""
        if self.enabled:
            from prometheus_client import CollectorRegistry, Counter, Histogram

            self.registry = CollectorRegistry()

            self.payment_attempts_total = Counter(
                "billing_payment_attempts_total",
                "Payment attempts by outcome",
                ["outcome"],
                registry=self.registry,
            )

            self.capture_duration_seconds = Histogram(
                "billing_capture_duration_seconds",
                "Payment provider capture latency in seconds",
                buckets=(0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0),
                registry=self.registry,
            )

            self.sca_decisions_total = Counter(
                "billing_sca_decisions_total",
                "Strong authentication decisions by reason",
                ["required", "reason"],
                registry=self.registry,
            )

            self.dunning_actions_total = Counter(
                "billing_dunning_actions_total",
                "Dunning notices and cancellations",
                ["action"],
                registry=self.registry,
            )

            self.batch_items_total = Counter(
                "billing_batch_items_total",
                "Batch billing items by result",
                ["result"],
                registry=self.registry,
            )
        else:
            self.payment_attempts_total = _DummyMetric()
            self.capture_duration_seconds = _DummyMetric()
            self.sca_decisions_total = _DummyMetric()
            self.dunning_actions_total = _DummyMetric()
            self.batch_items_total = _DummyMetric()

    def record_attempt(self, outcome: str) -> None:
        self.payment_attempts_total.labels(outcome=outcome).inc()

    def record_sca_decision(self, required: bool, reason: str) -> None:
        self.sca_decisions_total.labels(required=str(required).lower(), reason=reason).inc()

    def record_dunning_action(self, action: str) -> None:
        self.dunning_actions_total.labels(action=action).inc()

    def record_batch_item(self, result: str) -> None:
        self.batch_items_total.labels(result=result).inc()

    @contextmanager
    def observe_capture(self) -> t.Generator[None, None, None]:
        """
        Context manager for measuring provider capture latency.

        Yields:
            None, just provides timing context
        """
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self.capture_duration_seconds.observe(time.perf_counter() - start_time)


class _DummyMetric:
    """Dummy metric object for no-op mode."""

    def labels(self, **kwargs: str) -> "_DummyLabels":
        """Return dummy labels object."""
        return _DummyLabels()

    def inc(self, amount: float = 1) -> None:
        """No-op increment."""
        pass

    def observe(self, value: float) -> None:
        """No-op observation."""
        pass


class _DummyLabels:
    """Dummy labels object for no-op metrics."""

    def inc(self, amount: float = 1) -> None:
        """No-op increment."""
        pass

    def observe(self, value: float) -> None:
        """No-op observation."""
        pass
