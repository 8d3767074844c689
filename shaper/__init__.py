"""
Locality traffic shaper for a service mesh.

Modules:
- state: pods, latency edges, topology and traffic distributions
- scoring: raw per-edge weights from load, latency and capacity
- distribution: normalization, local-affinity floor, percentage rounding
- convergence: bounded stepping toward a target and the L1 change gate
- engine: TrafficEngine facade over the above
- balancer: OptiBalancer reconciliation against live cluster state
- k8s / telemetry: Kubernetes and Prometheus collaborators
- api: REST surface for reconcile and dry distribution runs
"""

import logging
import sys

__version__ = "0.3.0"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the service and CLI tools."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )
