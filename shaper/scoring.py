"""Raw traffic weights from pod load, node latency and upstream topology."""

from __future__ import annotations

import math
import logging
from typing import Dict, List, Optional

from shaper.state import (
    LatencyEdge,
    MetricsType,
    MetricWeights,
    PodMetrics,
    TrafficWeight,
    UpstreamGraphEntry,
)

logger = logging.getLogger(__name__)

# Neither load nor latency alone may take a destination's weight to zero.
MAX_PENALTY = 0.9

LATENCY_NORMALIZATIONS = ("global", "per_destination")


def group_pods_by_node(pods: List[PodMetrics]) -> Dict[str, List[PodMetrics]]:
    grouped: Dict[str, List[PodMetrics]] = {}
    for pod in pods:
        grouped.setdefault(pod.node, []).append(pod)
    return grouped


def pod_load(pod: PodMetrics, metric_type: MetricsType, weights: Optional[MetricWeights] = None) -> float:
    weights = weights or MetricWeights()
    cpu = pod.percent_usage.cpu or 0.0
    memory = pod.percent_usage.memory or 0.0
    if metric_type == MetricsType.CPU:
        return cpu
    if metric_type == MetricsType.CPU_MEMORY:
        return weights.cpu * cpu + weights.memory * memory
    return memory


def has_resolved_load(pod: PodMetrics, metric_type: MetricsType) -> bool:
    """True when every percentage ``metric_type`` reads is present and finite."""
    if metric_type == MetricsType.CPU:
        values = [pod.percent_usage.cpu]
    elif metric_type == MetricsType.MEMORY:
        values = [pod.percent_usage.memory]
    else:
        values = [pod.percent_usage.cpu, pod.percent_usage.memory]
    return all(v is not None and math.isfinite(v) for v in values)


def resolved_pods(pods: List[PodMetrics], metric_type: MetricsType) -> List[PodMetrics]:
    kept: List[PodMetrics] = []
    for pod in pods:
        if has_resolved_load(pod, metric_type):
            kept.append(pod)
        else:
            logger.info(f"Dropping pod {pod.pod} on {pod.node}: no {metric_type.value} usage data")
    return kept


def total_load(pods: List[PodMetrics], metric_type: MetricsType, weights: Optional[MetricWeights] = None) -> float:
    return sum(pod_load(p, metric_type, weights) for p in pods)


def mean_load(pods: List[PodMetrics], metric_type: MetricsType, weights: Optional[MetricWeights] = None) -> float:
    value = total_load(pods, metric_type, weights) / max(1, len(pods))
    return value if math.isfinite(value) else 0.0


def normalized_load(node_load: float, fleet_load: float) -> float:
    """Load penalty of a node relative to the fleet, capped at ``MAX_PENALTY``.

    The clamp to 1 for ratios >= 1 is subsumed by the cap; both are kept so
    the boundary results stay exactly as observed.
    """
    ratio = node_load / fleet_load if fleet_load > 0 else 1.0
    if not math.isfinite(ratio) or ratio >= 1:
        ratio = 1.0
    return min(MAX_PENALTY, ratio)


def incoming_latency_edges(
    upstream: List[UpstreamGraphEntry],
    node: str,
    nodes_latency: List[LatencyEdge],
) -> List[LatencyEdge]:
    """Edges into ``node`` whose source is a known upstream caller."""
    callers = {entry.node for entry in upstream}
    return [e for e in nodes_latency if e.to_node == node and e.from_node in callers]


def latency_ratio(latency: float, total: float) -> float:
    ratio = latency / total if total > 0 else 0.0
    if not math.isfinite(ratio) or ratio < 0:
        ratio = 0.0
    return min(MAX_PENALTY, ratio)


def score_traffic(
    pods: List[PodMetrics],
    upstream: List[UpstreamGraphEntry],
    nodes_latency: List[LatencyEdge],
    metric_type: MetricsType = MetricsType.CPU_MEMORY,
    weights: Optional[MetricWeights] = None,
    latency_normalization: str = "global",
) -> List[TrafficWeight]:
    """Compute one unnormalized weight per qualifying (from, to) latency edge.

    Args:
        pods: replica pods of the destination deployment; pods without
            usage for ``metric_type`` are dropped
        upstream: nodes observed calling the destination service
        nodes_latency: directed node-to-node latency edges
        metric_type: which resource defines node load
        weights: CPU/memory weights for ``MetricsType.CPU_MEMORY``
        latency_normalization: ``"global"`` divides every edge latency by the
            sum over all destinations; ``"per_destination"`` by the total into
            the edge's own destination

    Returns:
        Weight edges in destination-node order, then latency-edge order.
    """
    if latency_normalization not in LATENCY_NORMALIZATIONS:
        raise ValueError(f"Unknown latency normalization: {latency_normalization}")
    pods = resolved_pods(pods, metric_type)
    if not pods or not upstream:
        return []

    pods_per_node = group_pods_by_node(pods)
    total_replicas = max(1, len(pods))
    fleet_load = mean_load(pods, metric_type, weights)

    incoming = {
        node: incoming_latency_edges(upstream, node, nodes_latency)
        for node in pods_per_node
    }
    totals = {node: sum(e.latency for e in edges) for node, edges in incoming.items()}
    global_total = sum(totals.values())

    result: List[TrafficWeight] = []
    for node, node_pods in pods_per_node.items():
        load_penalty = normalized_load(mean_load(node_pods, metric_type, weights), fleet_load)
        capacity_share = len(node_pods) / total_replicas
        denominator = global_total if latency_normalization == "global" else totals[node]

        for edge in incoming[node]:
            lat = latency_ratio(edge.latency, denominator)
            weight = capacity_share * (1 - lat) * (1 - load_penalty)
            result.append(TrafficWeight(from_node=edge.from_node, to_node=node, weight=weight))

    logger.debug(f"Scored {len(result)} edges across {len(pods_per_node)} destination nodes")
    return result
