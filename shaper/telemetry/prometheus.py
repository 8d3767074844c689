"""Prometheus metrics adapter: upstream call graph and per-pod resource usage."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from shaper.state import Destination, UpstreamGraphEntry

logger = logging.getLogger(__name__)

UPSTREAM_GRAPH_QUERY = (
	'sum by (node, destination_service_name) ('
	'sum by (pod, namespace, destination_service_name) ('
	'rate(istio_requests_total{{reporter="source", destination_workload="{deployment}", '
	'destination_workload_namespace="{namespace}"}}[{window}])'
	') * on (pod, namespace) group_left(node) kube_pod_info'
	')'
)
CURRENT_CPU_QUERY = (
	'sum(rate(container_cpu_usage_seconds_total{{pod="{pod}", namespace="{namespace}", container!=""}}[1m]))'
)
CURRENT_MEMORY_QUERY = (
	'sum(container_memory_working_set_bytes{{pod="{pod}", namespace="{namespace}", container!=""}})'
)
AVG_CPU_QUERY = (
	'avg_over_time(sum(rate(container_cpu_usage_seconds_total'
	'{{pod="{pod}", namespace="{namespace}", container!=""}}[1m]))[{window}:])'
)
AVG_MEMORY_QUERY = (
	'avg_over_time(sum(container_memory_working_set_bytes'
	'{{pod="{pod}", namespace="{namespace}", container!=""}})[{window}:])'
)


class PrometheusQueryError(RuntimeError):
	"""Prometheus answered, but not with a successful query result."""


class PrometheusAdapter:
	"""Thin client over the Prometheus instant-query HTTP API."""

	def __init__(
		self,
		base_url: str,
		timeout_s: float = 10.0,
		graph_window: str = "2m",
		session: Optional[requests.Session] = None,
	) -> None:
		self.base_url = base_url.rstrip('/')
		self.timeout_s = timeout_s
		self.graph_window = graph_window
		self.session = session or requests.Session()

	def query(self, promql: str) -> List[Dict[str, Any]]:
		"""
		Run an instant query.

		Returns:
			The ``data.result`` vector

		Raises:
			requests.RequestException: On transport failures
			PrometheusQueryError: On non-2xx responses or a non-success status
		"""
		url = f"{self.base_url}/api/v1/query"
		response = self.session.get(url, params={"query": promql}, timeout=self.timeout_s)
		if response.status_code >= 300:
			raise PrometheusQueryError(
				f"Prometheus query failed: status={response.status_code}, body={response.text[:200]}"
			)
		body = response.json()
		if body.get("status") != "success":
			raise PrometheusQueryError(
				f"Prometheus query failed: {body.get('errorType')}: {body.get('error')}"
			)
		return body.get("data", {}).get("result", [])

	def _scalar(self, promql: str) -> Optional[float]:
		result = self.query(promql)
		if not result:
			return None
		try:
			return float(result[0]["value"][1])
		except (KeyError, IndexError, TypeError, ValueError):
			logger.warning(f"Unexpected sample in result of {promql}: {result[0]}")
			return None

	def get_upstream_graph(self, deployment: str, namespace: str) -> List[UpstreamGraphEntry]:
		"""Nodes sending requests to ``deployment``, with their destination services."""
		promql = UPSTREAM_GRAPH_QUERY.format(
			deployment=deployment,
			namespace=namespace,
			window=self.graph_window,
		)
		graph: Dict[str, UpstreamGraphEntry] = {}
		for sample in self.query(promql):
			labels = sample.get("metric", {})
			node = labels.get("node")
			service = labels.get("destination_service_name")
			if not node or not service:
				continue
			try:
				rps = float(sample["value"][1])
			except (KeyError, IndexError, TypeError, ValueError):
				rps = 0.0
			entry = graph.setdefault(node, UpstreamGraphEntry(node=node))
			entry.destinations.append(Destination(destination_service_name=service, rps=rps))

		logger.debug(f"Upstream graph for {namespace}/{deployment}: {len(graph)} nodes")
		return list(graph.values())

	def get_current_pod_cpu_usage(self, pod: str, namespace: str) -> Optional[float]:
		return self._scalar(CURRENT_CPU_QUERY.format(pod=pod, namespace=namespace))

	def get_current_pod_memory_usage(self, pod: str, namespace: str) -> Optional[float]:
		return self._scalar(CURRENT_MEMORY_QUERY.format(pod=pod, namespace=namespace))

	def get_avg_pod_cpu_usage(self, pod: str, namespace: str, window: str) -> Optional[float]:
		return self._scalar(AVG_CPU_QUERY.format(pod=pod, namespace=namespace, window=window))

	def get_avg_pod_memory_usage(self, pod: str, namespace: str, window: str) -> Optional[float]:
		return self._scalar(AVG_MEMORY_QUERY.format(pod=pod, namespace=namespace, window=window))
