"""Traffic-weight engine: scoring, affinity, rounding and convergence."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from shaper import convergence, distribution
from shaper.scoring import score_traffic
from shaper.state import (
    Distribute,
    LatencyEdge,
    MetricsType,
    MetricWeights,
    PercentTraffic,
    PodMetrics,
    UpstreamGraphEntry,
)

logger = logging.getLogger(__name__)


class TrafficEngine:
    """Computes per-source traffic percentages for a destination deployment."""

    def __init__(
        self,
        metric_type: MetricsType = MetricsType.CPU_MEMORY,
        weights: Optional[MetricWeights] = None,
        min_local_share: float = distribution.DEFAULT_MIN_LOCAL_SHARE,
        latency_normalization: str = "global",
    ) -> None:
        self.metric_type = metric_type
        self.weights = weights or MetricWeights()
        self.min_local_share = min_local_share
        self.latency_normalization = latency_normalization

    def calculate_traffic(
        self,
        replica_pods: List[PodMetrics],
        upstream: List[UpstreamGraphEntry],
        nodes_latency: List[LatencyEdge],
    ) -> List[PercentTraffic]:
        """
        Compute the target distribution.

        Args:
            replica_pods: pods of the destination deployment with resolved usage
            upstream: nodes calling the destination service
            nodes_latency: directed node-to-node latencies

        Returns:
            Percentages per (from, to); each source sums to 100. Empty when
            there is nothing to route.
        """
        weights = score_traffic(
            replica_pods,
            upstream,
            nodes_latency,
            metric_type=self.metric_type,
            weights=self.weights,
            latency_normalization=self.latency_normalization,
        )
        normalized = distribution.normalize_weights(weights)
        if not normalized:
            logger.info("Total traffic weight is zero, nothing to route")
            return []
        with_local = distribution.enforce_local_share(normalized, self.min_local_share)
        return distribution.to_percentages(with_local)

    def percent_list_to_distribute(self, traffic: List[PercentTraffic]) -> Distribute:
        return distribution.percent_list_to_distribute(traffic)

    def distribute_to_percent_list(self, distribute: Distribute) -> List[PercentTraffic]:
        return distribution.distribute_to_percent_list(distribute)

    def normalize_to_100(self, mapping: Dict[str, float]) -> Dict[str, int]:
        return distribution.normalize_to_100(mapping)

    def step_toward_target(
        self,
        current: Distribute,
        target: Distribute,
        step: float = convergence.DEFAULT_STEP,
        epsilon: float = convergence.DEFAULT_EPSILON,
    ) -> Distribute:
        return convergence.step_toward_target(current, target, step, epsilon)

    def l1_distance(self, a: Distribute, b: Distribute) -> float:
        return convergence.l1_distance(a, b)
