from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException

from conftest import destination_rule
from shaper.k8s import KubernetesAdapter, parse_cpu, parse_memory
from shaper.state import MetricWeights


@pytest.fixture
def apis():
    return SimpleNamespace(custom=MagicMock(), core=MagicMock(), apps=MagicMock())


@pytest.fixture
def adapter(apis):
    return KubernetesAdapter(custom_api=apis.custom, core_api=apis.core, apps_api=apis.apps)


def _container(requests=None, limits=None):
    return SimpleNamespace(resources=SimpleNamespace(requests=requests, limits=limits))


def _pod(name, node, phase="Running", containers=None):
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name),
        spec=SimpleNamespace(node_name=node, containers=containers or []),
        status=SimpleNamespace(phase=phase),
    )


@pytest.mark.parametrize(
    "value, expected",
    [("250m", 0.25), ("2", 2.0), ("500000n", 0.0005), ("100u", 0.0001), (None, 0.0), ("", 0.0)],
)
def test_parse_cpu(value, expected):
    assert parse_cpu(value) == pytest.approx(expected)


@pytest.mark.parametrize(
    "value, expected",
    [("128Mi", 128 * 1024 ** 2), ("1Gi", 1024 ** 3), ("500k", 500_000), ("2M", 2_000_000), ("4096", 4096.0)],
)
def test_parse_memory(value, expected):
    assert parse_memory(value) == pytest.approx(expected)


def test_read_missing_resource_returns_none(adapter, apis):
    apis.custom.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")
    assert adapter.read_custom_resource("networking.istio.io", "v1beta1", "ns", "destinationrules", "svc") is None


def test_read_failure_propagates(adapter, apis):
    apis.custom.get_namespaced_custom_object.side_effect = ApiException(status=403, reason="Forbidden")
    with pytest.raises(ApiException):
        adapter.read_custom_resource("networking.istio.io", "v1beta1", "ns", "destinationrules", "svc")


def test_apply_creates_absent_resource(adapter, apis):
    apis.custom.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")
    rule = destination_rule([], name="svc", namespace="ns")
    del rule["metadata"]["resourceVersion"]

    adapter.apply_custom_resource(rule)

    apis.custom.create_namespaced_custom_object.assert_called_once_with(
        "networking.istio.io", "v1beta1", "ns", "destinationrules", rule
    )
    apis.custom.replace_namespaced_custom_object.assert_not_called()


def test_apply_replaces_with_live_resource_version(adapter, apis):
    live = destination_rule([], name="svc", namespace="ns")
    live["metadata"]["resourceVersion"] = "7"
    apis.custom.get_namespaced_custom_object.return_value = live
    rule = destination_rule([{"from": "r/z/a", "to": {"r/z/a": 100}}], name="svc", namespace="ns")
    del rule["metadata"]["resourceVersion"]

    adapter.apply_custom_resource(rule)

    args = apis.custom.replace_namespaced_custom_object.call_args.args
    assert args[:5] == ("networking.istio.io", "v1beta1", "ns", "destinationrules", "svc")
    assert args[5]["metadata"]["resourceVersion"] == "7"
    assert "resourceVersion" not in rule["metadata"]


def test_apply_conflict_propagates(adapter, apis):
    apis.custom.get_namespaced_custom_object.return_value = destination_rule([], name="svc", namespace="ns")
    apis.custom.replace_namespaced_custom_object.side_effect = ApiException(status=409, reason="Conflict")
    with pytest.raises(ApiException):
        adapter.apply_custom_resource(destination_rule([], name="svc", namespace="ns"))


def test_cluster_topology_from_node_labels(adapter, apis):
    apis.core.list_node.return_value = SimpleNamespace(items=[
        SimpleNamespace(metadata=SimpleNamespace(name="n1", labels={
            "topology.kubernetes.io/region": "eu-west-1",
            "topology.kubernetes.io/zone": "eu-west-1a",
        })),
        SimpleNamespace(metadata=SimpleNamespace(name="n2", labels=None)),
    ])

    topology = adapter.get_cluster_topology()

    assert [(t.node, t.region, t.zone) for t in topology] == [
        ("n1", "eu-west-1", "eu-west-1a"),
        ("n2", "unknown", "unknown"),
    ]


def test_replica_pod_metrics(adapter, apis):
    apis.apps.read_namespaced_deployment.return_value = SimpleNamespace(
        spec=SimpleNamespace(selector=SimpleNamespace(match_labels={"app": "svc", "tier": "api"}))
    )
    apis.custom.list_namespaced_custom_object.return_value = {
        "items": [
            {
                "metadata": {"name": "svc-1"},
                "containers": [
                    {"usage": {"cpu": "250m", "memory": "64Mi"}},
                    {"usage": {"cpu": "50m", "memory": "0"}},
                ],
            },
        ]
    }
    apis.core.list_namespaced_pod.return_value = SimpleNamespace(items=[
        _pod("svc-1", "n1", containers=[
            _container(requests={"cpu": "250m", "memory": "64Mi"}, limits={"cpu": "1", "memory": "256Mi"}),
            _container(requests={"cpu": "100m"}, limits=None),
        ]),
        _pod("svc-2", "n2", containers=[_container(requests={"cpu": "100m", "memory": "32Mi"})]),
        _pod("svc-3", None, phase="Pending"),
    ])

    pods = adapter.get_replica_pod_metrics("svc", "ns", MetricWeights())

    apis.core.list_namespaced_pod.assert_called_once_with("ns", label_selector="app=svc,tier=api")
    assert [p.pod for p in pods] == ["svc-1", "svc-2"]

    first = pods[0]
    assert first.node == "n1"
    assert first.usage.cpu == pytest.approx(0.3)
    assert first.limits.cpu == pytest.approx(1.0)
    assert first.requested.cpu == pytest.approx(0.35)
    assert first.percent_usage.cpu == pytest.approx(0.3)
    assert first.percent_usage.memory == pytest.approx(0.25)
    assert first.percent_usage.cpu_and_memory == pytest.approx(0.55)

    # no usage reported: left for backfill
    second = pods[1]
    assert second.percent_usage.cpu is None
    assert second.usage.cpu == 0.0


def test_missing_metrics_api_leaves_usage_unresolved(adapter, apis):
    apis.apps.read_namespaced_deployment.return_value = SimpleNamespace(
        spec=SimpleNamespace(selector=SimpleNamespace(match_labels={"app": "svc"}))
    )
    apis.custom.list_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")
    apis.core.list_namespaced_pod.return_value = SimpleNamespace(items=[_pod("svc-1", "n1")])

    pods = adapter.get_replica_pod_metrics("svc", "ns")

    assert len(pods) == 1
    assert pods[0].percent_usage.memory is None
