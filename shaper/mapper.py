"""Translate between node-level distributions and Istio DestinationRules."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from shaper.distribution import (
    distribute_to_entries,
    entries_to_distribute,
    normalize_to_100,
    percent_list_to_distribute,
)
from shaper.state import ClusterTopology, Distribute, PercentTraffic

logger = logging.getLogger(__name__)

ISTIO_GROUP = "networking.istio.io"
ISTIO_VERSION = "v1beta1"
DESTINATION_RULE_PLURAL = "destinationrules"


def locality_key(node: str, topology: List[ClusterTopology]) -> Optional[str]:
    """``region/zone/node`` for a node, or None when its topology is unknown."""
    for entry in topology:
        if entry.node == node:
            return f"{entry.region}/{entry.zone}/{entry.node}"
    return None


def node_from_locality(key: str) -> str:
    return key.rsplit("/", 1)[-1]


def to_locality_distribute(distribute: Distribute, topology: List[ClusterTopology]) -> Distribute:
    out: Distribute = {}
    for source in sorted(distribute):
        source_key = locality_key(source, topology)
        if source_key is None:
            logger.warning(f"No topology for source node {source}, dropping its distribution")
            continue
        targets: Dict[str, float] = {}
        for target, pct in distribute[source].items():
            target_key = locality_key(target, topology)
            if target_key is None:
                logger.warning(f"No topology for node {target}, dropping edge {source} -> {target}")
                continue
            targets[target_key] = pct
        if len(targets) != len(distribute[source]):
            targets = normalize_to_100(targets)
        if targets:
            out[source_key] = dict(targets)
    return out


def to_destination_rule(
    traffic: List[PercentTraffic],
    namespace: str,
    service_name: str,
    topology: List[ClusterTopology],
) -> Dict[str, Any]:
    distribute = to_locality_distribute(percent_list_to_distribute(traffic), topology)
    return {
        "apiVersion": f"{ISTIO_GROUP}/{ISTIO_VERSION}",
        "kind": "DestinationRule",
        "metadata": {
            "name": service_name,
            "namespace": namespace,
        },
        "spec": {
            "host": f"{service_name}.{namespace}.svc.cluster.local",
            "trafficPolicy": {
                "loadBalancer": {
                    "simple": "LEAST_REQUEST",
                    "localityLbSetting": {
                        "enabled": True,
                        "distribute": distribute_to_entries(distribute),
                    },
                },
            },
        },
    }


def distribute_from_destination_rule(rule: Dict[str, Any]) -> Optional[Distribute]:
    """Node-keyed distribution of a live rule, or None when it carries none."""
    entries: Any = rule
    for key in ("spec", "trafficPolicy", "loadBalancer", "localityLbSetting", "distribute"):
        entries = entries.get(key) if isinstance(entries, dict) else None
    if not isinstance(entries, list):
        return None

    distribute: Distribute = {}
    for source, targets in entries_to_distribute(entries).items():
        node_targets = distribute.setdefault(node_from_locality(source), {})
        for target, pct in targets.items():
            node = node_from_locality(target)
            node_targets[node] = node_targets.get(node, 0) + pct
    return distribute
