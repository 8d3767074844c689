"""Kubernetes cluster-state adapter: DestinationRules, replica pod metrics, node topology."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from shaper.state import ClusterTopology, MetricWeights, PercentUsage, PodMetrics, ResourcePair

logger = logging.getLogger(__name__)

REGION_LABEL = "topology.kubernetes.io/region"
ZONE_LABEL = "topology.kubernetes.io/zone"
UNKNOWN_LOCALITY = "unknown"


def parse_cpu(cpu_str: Optional[str]) -> float:
    """Parse CPU quantity (e.g., '100m' -> 0.1, '2' -> 2.0, '250000n' -> 0.00025)."""
    if not cpu_str:
        return 0.0

    cpu_str = str(cpu_str).strip()
    if cpu_str.endswith('n'):
        return float(cpu_str[:-1]) / 1e9
    if cpu_str.endswith('u'):
        return float(cpu_str[:-1]) / 1e6
    if cpu_str.endswith('m'):
        return float(cpu_str[:-1]) / 1000.0
    return float(cpu_str)


_MEMORY_SUFFIXES = (
    ('Ki', 1024),
    ('Mi', 1024 ** 2),
    ('Gi', 1024 ** 3),
    ('Ti', 1024 ** 4),
    ('K', 1000),
    ('k', 1000),
    ('M', 1000 ** 2),
    ('G', 1000 ** 3),
    ('T', 1000 ** 4),
)


def parse_memory(memory_str: Optional[str]) -> float:
    """Parse memory quantity into bytes (e.g., '100Mi' -> 104857600)."""
    if not memory_str:
        return 0.0

    memory_str = str(memory_str).strip()
    for suffix, factor in _MEMORY_SUFFIXES:
        if memory_str.endswith(suffix):
            return float(memory_str[:-len(suffix)]) * factor
    # Assume bytes
    return float(memory_str)


def _ratio(usage: float, limit: float, request: float) -> Optional[float]:
    if limit > 0:
        return usage / limit
    if request > 0:
        return usage / request
    return None


class KubernetesAdapter:
    """Reads and writes cluster state through the Kubernetes API."""

    def __init__(
        self,
        custom_api: Optional[client.CustomObjectsApi] = None,
        core_api: Optional[client.CoreV1Api] = None,
        apps_api: Optional[client.AppsV1Api] = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            custom_api: CustomObjectsApi to use (loads cluster config when omitted)
            core_api: CoreV1Api to use
            apps_api: AppsV1Api to use
        """
        if custom_api is None or core_api is None or apps_api is None:
            try:
                config.load_incluster_config()
                logger.info("Loaded in-cluster Kubernetes config")
            except Exception:
                try:
                    config.load_kube_config()
                    logger.info("Loaded kubeconfig")
                except Exception as e:
                    logger.warning(f"Could not load Kubernetes config: {e}")

        self.custom = custom_api or client.CustomObjectsApi()
        self.core = core_api or client.CoreV1Api()
        self.apps = apps_api or client.AppsV1Api()

    def read_custom_resource(
        self,
        group: str,
        version: str,
        namespace: str,
        plural: str,
        name: str,
    ) -> Optional[Dict[str, Any]]:
        """
        Read a namespaced custom resource.

        Returns:
            The resource, or None if it does not exist

        Raises:
            ApiException: For any API failure other than 404
        """
        try:
            return self.custom.get_namespaced_custom_object(group, version, namespace, plural, name)
        except ApiException as e:
            if e.status == 404:
                return None
            logger.error(f"Failed to read {plural}/{name} in {namespace}: status={e.status}, reason={e.reason}")
            raise

    def apply_custom_resource(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create the resource, or replace the live one carrying its resourceVersion.

        Raises:
            ApiException: If the API rejects the write (including conflicts)
        """
        group, version = resource["apiVersion"].split("/", 1)
        plural = f"{resource['kind'].lower()}s"
        namespace = resource["metadata"]["namespace"]
        name = resource["metadata"]["name"]

        existing = self.read_custom_resource(group, version, namespace, plural, name)
        try:
            if existing is None:
                applied = self.custom.create_namespaced_custom_object(group, version, namespace, plural, resource)
                logger.info(f"Created {resource['kind']} {namespace}/{name}")
            else:
                body = dict(resource)
                body["metadata"] = dict(resource["metadata"])
                body["metadata"]["resourceVersion"] = existing["metadata"]["resourceVersion"]
                applied = self.custom.replace_namespaced_custom_object(group, version, namespace, plural, name, body)
                logger.info(f"Replaced {resource['kind']} {namespace}/{name}")
        except ApiException as e:
            logger.error(f"Failed to apply {resource['kind']} {namespace}/{name}: status={e.status}, reason={e.reason}")
            raise
        return applied

    def get_cluster_topology(self) -> List[ClusterTopology]:
        topology: List[ClusterTopology] = []
        for node in self.core.list_node().items:
            labels = node.metadata.labels or {}
            topology.append(ClusterTopology(
                node=node.metadata.name,
                zone=labels.get(ZONE_LABEL, UNKNOWN_LOCALITY),
                region=labels.get(REGION_LABEL, UNKNOWN_LOCALITY),
            ))
        return topology

    def _pod_usage(self, namespace: str, label_selector: str) -> Dict[str, ResourcePair]:
        try:
            metrics = self.custom.list_namespaced_custom_object(
                group="metrics.k8s.io",
                version="v1beta1",
                namespace=namespace,
                plural="pods",
                label_selector=label_selector,
            )
        except ApiException as e:
            if e.status == 404:
                # Metrics API not available, usage is left for backfill
                logger.warning("metrics.k8s.io not available, pod usage will be backfilled")
                return {}
            raise

        usage: Dict[str, ResourcePair] = {}
        for item in metrics.get('items', []):
            pod_name = item.get('metadata', {}).get('name')
            if not pod_name:
                continue
            total = ResourcePair()
            for container in item.get('containers', []):
                container_usage = container.get('usage', {})
                total.cpu += parse_cpu(container_usage.get('cpu', '0'))
                total.memory += parse_memory(container_usage.get('memory', '0'))
            usage[pod_name] = total
        return usage

    def get_replica_pod_metrics(
        self,
        deployment: str,
        namespace: str,
        weights: Optional[MetricWeights] = None,
    ) -> List[PodMetrics]:
        """
        Collect usage, requests and limits of the running pods of a deployment.

        Percentages are usage over limits (requests when no limit is set) and
        are left None when neither is known or usage was not reported.
        """
        weights = weights or MetricWeights()
        dep = self.apps.read_namespaced_deployment(deployment, namespace)
        match_labels = dep.spec.selector.match_labels or {}
        label_selector = ",".join(f"{k}={v}" for k, v in sorted(match_labels.items()))

        usage_by_pod = self._pod_usage(namespace, label_selector)
        pods = self.core.list_namespaced_pod(namespace, label_selector=label_selector)

        result: List[PodMetrics] = []
        for pod in pods.items:
            if pod.status.phase != "Running" or not pod.spec.node_name:
                continue

            requested = ResourcePair()
            limits = ResourcePair()
            for container in pod.spec.containers or []:
                resources = container.resources
                req = (resources.requests if resources else None) or {}
                lim = (resources.limits if resources else None) or {}
                requested.cpu += parse_cpu(req.get('cpu'))
                requested.memory += parse_memory(req.get('memory'))
                limits.cpu += parse_cpu(lim.get('cpu'))
                limits.memory += parse_memory(lim.get('memory'))

            usage = usage_by_pod.get(pod.metadata.name)
            percent = PercentUsage()
            if usage is not None:
                percent.cpu = _ratio(usage.cpu, limits.cpu, requested.cpu)
                percent.memory = _ratio(usage.memory, limits.memory, requested.memory)
                if percent.cpu is not None and percent.memory is not None:
                    percent.cpu_and_memory = weights.cpu * percent.cpu + weights.memory * percent.memory

            result.append(PodMetrics(
                pod=pod.metadata.name,
                node=pod.spec.node_name,
                usage=usage or ResourcePair(),
                percent_usage=percent,
                requested=requested,
                limits=limits,
            ))

        logger.debug(f"Collected metrics for {len(result)} pods of {namespace}/{deployment}")
        return result
