from conftest import destination_rule
from shaper.mapper import (
    distribute_from_destination_rule,
    locality_key,
    node_from_locality,
    to_destination_rule,
)
from shaper.state import ClusterTopology, PercentTraffic


def test_destination_rule_has_locality_distribution(two_node_topology):
    traffic = [
        PercentTraffic("node-a", "node-a", 70),
        PercentTraffic("node-a", "node-b", 30),
        PercentTraffic("node-b", "node-b", 100),
    ]

    dr = to_destination_rule(traffic, "ns-test", "my-svc", two_node_topology)

    assert dr["apiVersion"] == "networking.istio.io/v1beta1"
    assert dr["kind"] == "DestinationRule"
    assert dr["metadata"]["name"] == "my-svc"
    assert dr["metadata"]["namespace"] == "ns-test"
    assert dr["spec"]["host"] == "my-svc.ns-test.svc.cluster.local"

    lb = dr["spec"]["trafficPolicy"]["loadBalancer"]
    assert lb["simple"] == "LEAST_REQUEST"
    assert lb["localityLbSetting"]["enabled"] is True

    by_from = {d["from"]: d["to"] for d in lb["localityLbSetting"]["distribute"]}
    assert by_from == {
        "region-1/zone-1/node-a": {
            "region-1/zone-1/node-a": 70,
            "region-1/zone-1/node-b": 30,
        },
        "region-1/zone-1/node-b": {"region-1/zone-1/node-b": 100},
    }


def test_nodes_without_topology_are_dropped_and_renormalized(two_node_topology):
    traffic = [
        PercentTraffic("node-a", "node-a", 50),
        PercentTraffic("node-a", "node-b", 25),
        PercentTraffic("node-a", "node-x", 25),
        PercentTraffic("node-x", "node-a", 100),
    ]

    dr = to_destination_rule(traffic, "ns-test", "my-svc", two_node_topology)
    distribute = dr["spec"]["trafficPolicy"]["loadBalancer"]["localityLbSetting"]["distribute"]

    assert distribute == [{
        "from": "region-1/zone-1/node-a",
        "to": {"region-1/zone-1/node-a": 67, "region-1/zone-1/node-b": 33},
    }]


def test_locality_key_lookup():
    topology = [ClusterTopology(node="w1", zone="eu-west-1a", region="eu-west-1")]
    assert locality_key("w1", topology) == "eu-west-1/eu-west-1a/w1"
    assert locality_key("w2", topology) is None
    assert node_from_locality("eu-west-1/eu-west-1a/w1") == "w1"
    assert node_from_locality("w1") == "w1"


def test_distribution_is_read_back_by_node():
    rule = destination_rule([
        {"from": "r/z/node-a", "to": {"r/z/node-a": 70, "r/z/node-b": 30}},
        {"from": "r/z/node-b", "to": {"r/z/node-b": 100}},
    ])
    assert distribute_from_destination_rule(rule) == {
        "node-a": {"node-a": 70, "node-b": 30},
        "node-b": {"node-b": 100},
    }


def test_rule_without_distribution_reads_as_none():
    rule = destination_rule([])
    rule["spec"]["trafficPolicy"]["loadBalancer"].pop("localityLbSetting")
    assert distribute_from_destination_rule(rule) is None
    assert distribute_from_destination_rule({}) is None
