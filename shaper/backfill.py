"""Fill in missing per-pod usage percentages from Prometheus."""

from __future__ import annotations

import math
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import List, Optional

from shaper.state import MetricWeights, PercentUsage, PodMetrics, ResourcePair
from shaper.telemetry.prometheus import PrometheusAdapter

logger = logging.getLogger(__name__)

# Limits are estimated as twice the observed demand when unknown.
LIMIT_HEADROOM = 2.0


@dataclass
class BackfillOutcome:
    pod: str
    metrics: Optional[PodMetrics] = None
    dropped_reason: Optional[str] = None

    @property
    def dropped(self) -> bool:
        return self.metrics is None


def _is_finite(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value)


def needs_backfill(pod: PodMetrics) -> bool:
    p = pod.percent_usage
    return not (_is_finite(p.cpu) and _is_finite(p.memory) and _is_finite(p.cpu_and_memory))


def _safe_div(num: float, den: float) -> float:
    return num / den if den > 0 else 0.0


def backfill_pod(
    pod: PodMetrics,
    namespace: str,
    weights: MetricWeights,
    prometheus: PrometheusAdapter,
    avg_window: str = "2m",
) -> BackfillOutcome:
    """Resolve the usage percentages of one pod; the pod is dropped when usage is unknown."""
    if not needs_backfill(pod):
        return BackfillOutcome(pod=pod.pod, metrics=pod)

    cpu_usage = prometheus.get_current_pod_cpu_usage(pod.pod, namespace) if pod.usage.cpu == 0 else pod.usage.cpu
    mem_usage = (
        prometheus.get_current_pod_memory_usage(pod.pod, namespace) if pod.usage.memory == 0 else pod.usage.memory
    )
    # 0 is a valid reading, only a missing sample drops the pod
    if cpu_usage is None or mem_usage is None:
        logger.info(f"Skipping pod {pod.pod} due to missing resource data")
        return BackfillOutcome(pod=pod.pod, dropped_reason="missing resource data")

    avg_cpu = prometheus.get_avg_pod_cpu_usage(pod.pod, namespace, avg_window)
    avg_mem = prometheus.get_avg_pod_memory_usage(pod.pod, namespace, avg_window)
    has_avg_cpu = avg_cpu is not None and avg_cpu > 0
    has_avg_mem = avg_mem is not None and avg_mem > 0

    limit_cpu = (avg_cpu if has_avg_cpu else cpu_usage) * LIMIT_HEADROOM
    limit_mem = (avg_mem if has_avg_mem else mem_usage) * LIMIT_HEADROOM

    percent_cpu = _safe_div(cpu_usage, limit_cpu)
    percent_mem = _safe_div(mem_usage, limit_mem)

    updated = replace(
        pod,
        usage=ResourcePair(cpu=cpu_usage, memory=mem_usage),
        percent_usage=PercentUsage(
            cpu=percent_cpu,
            memory=percent_mem,
            cpu_and_memory=weights.cpu * percent_cpu + weights.memory * percent_mem,
        ),
        requested=ResourcePair(
            cpu=avg_cpu if has_avg_cpu else cpu_usage,
            memory=avg_mem if has_avg_mem else mem_usage,
        ),
        limits=ResourcePair(cpu=limit_cpu, memory=limit_mem),
    )
    return BackfillOutcome(pod=pod.pod, metrics=updated)


def backfill_outcomes(
    pods: List[PodMetrics],
    namespace: str,
    weights: MetricWeights,
    prometheus: PrometheusAdapter,
    avg_window: str = "2m",
    max_workers: int = 8,
) -> List[BackfillOutcome]:
    """Backfill every pod on a bounded thread pool. Outcomes keep the input order."""
    if not pods:
        return []
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(pods))), thread_name_prefix="backfill") as pool:
        return list(pool.map(
            lambda p: backfill_pod(p, namespace, weights, prometheus, avg_window),
            pods,
        ))


def add_missing_resources(
    pods: List[PodMetrics],
    namespace: str,
    weights: MetricWeights,
    prometheus: PrometheusAdapter,
    avg_window: str = "2m",
    max_workers: int = 8,
) -> List[PodMetrics]:
    outcomes = backfill_outcomes(pods, namespace, weights, prometheus, avg_window, max_workers)
    kept = [o.metrics for o in outcomes if o.metrics is not None]
    if len(kept) != len(pods):
        logger.info(f"Dropped {len(pods) - len(kept)} of {len(pods)} pods in {namespace} with missing usage")
    return kept
