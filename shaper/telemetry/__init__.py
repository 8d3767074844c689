"""Metrics collaborators (Prometheus)."""

from shaper.telemetry.prometheus import PrometheusAdapter, PrometheusQueryError

__all__ = ["PrometheusAdapter", "PrometheusQueryError"]
