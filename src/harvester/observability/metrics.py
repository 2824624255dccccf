"""Prometheus metrics for extraction passes and sessions."""

from __future__ import annotations

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


class HarvestMetrics:
    """Metrics collector with Prometheus integration.

    Each instance owns its registry so tests and multiple services in one
    process do not collide on metric names.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._initialize_metrics()

    def _initialize_metrics(self) -> None:
        """Initialize all extraction metrics."""

        # Extraction pass metrics
        self.extractions_total = Counter(
            'harvest_extractions_total',
            'Extraction passes by winning strategy and outcome',
            ['strategy', 'outcome'],
            registry=self.registry
        )

        self.extraction_duration = Histogram(
            'harvest_extraction_duration_seconds',
            'Full extraction pass duration in seconds',
            buckets=[0.5, 1, 2, 3, 5, 8, 13, 20, 30, 60],
            registry=self.registry
        )

        self.strategy_attempts_total = Counter(
            'harvest_strategy_attempts_total',
            'Strategy attempts by strategy and result',
            ['strategy', 'result'],
            registry=self.registry
        )

        # Stability metrics
        self.stability_wait_duration = Histogram(
            'harvest_stability_wait_seconds',
            'Time spent waiting for page stability',
            buckets=[1, 2, 3, 4, 5, 7, 10, 15, 20],
            registry=self.registry
        )

        self.stability_timeouts_total = Counter(
            'harvest_stability_timeouts_total',
            'Stability waits that hit the ceiling, were cancelled or failed',
            ['kind'],
            registry=self.registry
        )

        # Record metrics
        self.records_accepted_total = Counter(
            'harvest_records_accepted_total',
            'Records accepted into sessions',
            ['strategy'],
            registry=self.registry
        )

        self.records_rejected_total = Counter(
            'harvest_records_rejected_total',
            'Candidates rejected by reason code',
            ['reason'],
            registry=self.registry
        )

        # Session metrics
        self.active_sessions = Gauge(
            'harvest_active_sessions',
            'Sessions currently open',
            registry=self.registry
        )

        self.sessions_completed_total = Counter(
            'harvest_sessions_completed_total',
            'Sessions completed by cause',
            ['cause'],
            registry=self.registry
        )

    def export(self) -> bytes:
        """Render the registry in Prometheus exposition format."""
        return generate_latest(self.registry)
