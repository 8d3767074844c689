import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from shaper.state import (
    ClusterTopology,
    Destination,
    LatencyEdge,
    PercentUsage,
    PodMetrics,
    ReconcileRequest,
    UpstreamGraphEntry,
)


def make_pod(pod: str, node: str, cpu: float, memory: float) -> PodMetrics:
    return PodMetrics(
        pod=pod,
        node=node,
        percent_usage=PercentUsage(cpu=cpu, memory=memory, cpu_and_memory=cpu + memory),
    )


@pytest.fixture
def two_node_pods():
    return [
        # node-a: higher load
        make_pod("pod-a-1", "node-a", 0.7, 0.6),
        make_pod("pod-a-2", "node-a", 0.6, 0.5),
        # node-b: lighter load
        make_pod("pod-b-1", "node-b", 0.3, 0.3),
        make_pod("pod-b-2", "node-b", 0.35, 0.25),
    ]


@pytest.fixture
def two_node_upstream():
    return [
        UpstreamGraphEntry(node="node-a", destinations=[Destination("my-svc", rps=12.0)]),
        UpstreamGraphEntry(node="node-b", destinations=[Destination("my-svc", rps=8.0)]),
    ]


@pytest.fixture
def two_node_latency():
    return [
        LatencyEdge("node-a", "node-a", 10),
        LatencyEdge("node-a", "node-b", 30),
        LatencyEdge("node-b", "node-b", 8),
        LatencyEdge("node-b", "node-a", 20),
    ]


@pytest.fixture
def two_node_topology():
    return [
        ClusterTopology(node="node-a", zone="zone-1", region="region-1"),
        ClusterTopology(node="node-b", zone="zone-1", region="region-1"),
    ]


@pytest.fixture
def two_node_request(two_node_pods, two_node_latency, two_node_topology):
    return ReconcileRequest(
        deployment="my-svc-v1",
        namespace="ns-test",
        replica_pods=two_node_pods,
        nodes_latency=two_node_latency,
        cluster_topology=two_node_topology,
    )


class FakeCluster:
    """In-memory stand-in for the Kubernetes adapter."""

    def __init__(self, rule=None, pods=None, topology=None, read_error=None):
        self.rule = rule
        self.pods = pods or []
        self.topology = topology or []
        self.read_error = read_error
        self.reads = []
        self.applied = []

    def read_custom_resource(self, group, version, namespace, plural, name):
        self.reads.append((group, version, namespace, plural, name))
        if self.read_error is not None:
            raise self.read_error
        return self.rule

    def apply_custom_resource(self, resource):
        self.applied.append(resource)
        return resource

    def get_replica_pod_metrics(self, deployment, namespace, weights=None):
        return list(self.pods)

    def get_cluster_topology(self):
        return list(self.topology)


class FakeMetrics:
    """In-memory stand-in for the Prometheus adapter."""

    def __init__(self, upstream=None, cpu=None, memory=None, avg_cpu=None, avg_memory=None):
        self.upstream = upstream or []
        self.cpu = cpu or {}
        self.memory = memory or {}
        self.avg_cpu = avg_cpu or {}
        self.avg_memory = avg_memory or {}

    def get_upstream_graph(self, deployment, namespace):
        return list(self.upstream)

    def get_current_pod_cpu_usage(self, pod, namespace):
        return self.cpu.get(pod)

    def get_current_pod_memory_usage(self, pod, namespace):
        return self.memory.get(pod)

    def get_avg_pod_cpu_usage(self, pod, namespace, window):
        return self.avg_cpu.get(pod)

    def get_avg_pod_memory_usage(self, pod, namespace, window):
        return self.avg_memory.get(pod)


def destination_rule(distribute_entries, name="my-svc", namespace="ns-test"):
    return {
        "apiVersion": "networking.istio.io/v1beta1",
        "kind": "DestinationRule",
        "metadata": {"name": name, "namespace": namespace, "resourceVersion": "42"},
        "spec": {
            "host": f"{name}.{namespace}.svc.cluster.local",
            "trafficPolicy": {
                "loadBalancer": {
                    "simple": "LEAST_REQUEST",
                    "localityLbSetting": {"enabled": True, "distribute": distribute_entries},
                },
            },
        },
    }
