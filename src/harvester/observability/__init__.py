"""Observability: Prometheus metrics for extraction passes and sessions."""

from .metrics import HarvestMetrics

__all__ = ['HarvestMetrics']
