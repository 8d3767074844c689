"""Reconciliation of a destination service's locality traffic distribution."""

from __future__ import annotations

import logging
from typing import Any, Optional

from shaper.backfill import add_missing_resources
from shaper.config import BalancerConfig
from shaper.engine import TrafficEngine
from shaper.latency import LatencyMatrix
from shaper.mapper import (
    DESTINATION_RULE_PLURAL,
    ISTIO_GROUP,
    ISTIO_VERSION,
    distribute_from_destination_rule,
    to_destination_rule,
)
from shaper.state import ReconcileRequest, ReconcileResult, SkipReason

logger = logging.getLogger(__name__)

# Delta reported when the live rule has no distribution to step from.
FULL_CHANGE = 100.0


class OptiBalancer:
    """
    Computes and incrementally applies the traffic distribution of one service.

    Collaborators:
    - cluster: reads/applies DestinationRules, lists replica pods and topology
      (``shaper.k8s.KubernetesAdapter``)
    - metrics: upstream call graph and pod usage (``shaper.telemetry.PrometheusAdapter``)

    Collaborator failures propagate; nothing is retried here.
    """

    def __init__(
        self,
        cluster: Any,
        metrics: Any,
        config: Optional[BalancerConfig] = None,
        latency_matrix: Optional[LatencyMatrix] = None,
    ) -> None:
        self.cluster = cluster
        self.metrics = metrics
        self.config = config or BalancerConfig()
        self.latency_matrix = latency_matrix or LatencyMatrix()
        self.engine = TrafficEngine(
            metric_type=self.config.metric_type,
            weights=self.config.metric_weights,
            min_local_share=self.config.min_local_share,
            latency_normalization=self.config.latency_normalization,
        )

    @classmethod
    def from_config(cls, config: BalancerConfig) -> "OptiBalancer":
        """Wire live Kubernetes and Prometheus collaborators from ``config``."""
        from shaper.k8s import KubernetesAdapter
        from shaper.telemetry.prometheus import PrometheusAdapter

        matrix = None
        if config.latency_matrix_path:
            matrix = LatencyMatrix.from_yaml(config.latency_matrix_path)
        return cls(
            cluster=KubernetesAdapter(),
            metrics=PrometheusAdapter(config.prometheus_url, graph_window=config.avg_window),
            config=config,
            latency_matrix=matrix,
        )

    def gather(self, deployment: str, namespace: str) -> ReconcileRequest:
        """Collect the live inputs of one iteration."""
        pods = self.cluster.get_replica_pod_metrics(deployment, namespace, self.config.metric_weights)
        pods = add_missing_resources(
            pods,
            namespace,
            self.config.metric_weights,
            self.metrics,
            avg_window=self.config.avg_window,
            max_workers=self.config.backfill_workers,
        )
        topology = self.cluster.get_cluster_topology()
        nodes = [t.node for t in topology] + [p.node for p in pods]
        return ReconcileRequest(
            deployment=deployment,
            namespace=namespace,
            replica_pods=pods,
            nodes_latency=self.latency_matrix.edges(nodes),
            cluster_topology=topology,
        )

    def reconcile(self, deployment: str, namespace: str, dry_run: bool = False) -> ReconcileResult:
        return self.execute(self.gather(deployment, namespace), dry_run=dry_run)

    def execute(self, request: ReconcileRequest, dry_run: bool = False) -> ReconcileResult:
        """
        Run one reconciliation.

        Args:
            request: live inputs for the deployment
            dry_run: compute the outcome without writing to the cluster

        Returns:
            ``applied`` with the written rule, or ``skipped`` with a reason
        """
        deployment, namespace = request.deployment, request.namespace
        upstream = self.metrics.get_upstream_graph(deployment, namespace)
        if not upstream:
            logger.info(f"No upstream traffic for {namespace}/{deployment}, skipping")
            return ReconcileResult(outcome="skipped", reason=SkipReason.NO_TRAFFIC, dry_run=dry_run)

        logger.info(f"Computing traffic distribution for {namespace}/{deployment}")
        target_list = self.engine.calculate_traffic(request.replica_pods, upstream, request.nodes_latency)
        if not target_list:
            logger.info(f"Nothing to route for {namespace}/{deployment}, skipping")
            return ReconcileResult(outcome="skipped", reason=SkipReason.NO_TRAFFIC, dry_run=dry_run)

        destinations = upstream[0].destinations
        if not destinations:
            logger.warning(f"Upstream graph of {namespace}/{deployment} names no destination service")
            return ReconcileResult(outcome="skipped", reason=SkipReason.NO_DESTINATION, dry_run=dry_run)
        service_name = destinations[0].destination_service_name

        current_rule = self.cluster.read_custom_resource(
            ISTIO_GROUP, ISTIO_VERSION, namespace, DESTINATION_RULE_PLURAL, service_name
        )
        if current_rule is None:
            rule = to_destination_rule(target_list, namespace, service_name, request.cluster_topology)
            logger.info(f"No DestinationRule for {namespace}/{service_name} yet, bootstrapping")
            return self._apply(rule, service_name, FULL_CHANGE, dry_run, bootstrap=True)

        current = distribute_from_destination_rule(current_rule)
        target = self.engine.percent_list_to_distribute(target_list)

        if current is None:
            next_distribute, delta = target, FULL_CHANGE
        else:
            next_distribute = self.engine.step_toward_target(
                current, target, self.config.step_size, self.config.epsilon
            )
            delta = self.engine.l1_distance(current, next_distribute)

        if delta < self.config.change_threshold:
            logger.info(f"Skip apply for {namespace}/{service_name} (delta={delta:.2f} < {self.config.change_threshold})")
            return ReconcileResult(
                outcome="skipped",
                service_name=service_name,
                reason=SkipReason.INSIGNIFICANT_CHANGE,
                delta=delta,
                dry_run=dry_run,
            )

        next_list = self.engine.distribute_to_percent_list(next_distribute)
        rule = to_destination_rule(next_list, namespace, service_name, request.cluster_topology)
        return self._apply(rule, service_name, delta, dry_run)

    def _apply(self, rule, service_name: str, delta: float, dry_run: bool, bootstrap: bool = False) -> ReconcileResult:
        if dry_run:
            logger.info(f"Dry run, not applying DestinationRule {service_name} (delta={delta:.2f})")
        else:
            self.cluster.apply_custom_resource(rule)
            logger.info(f"Applied DestinationRule {service_name} (delta={delta:.2f})")
        return ReconcileResult(
            outcome="applied",
            service_name=service_name,
            delta=delta,
            destination_rule=rule,
            bootstrap=bootstrap,
            dry_run=dry_run,
        )
