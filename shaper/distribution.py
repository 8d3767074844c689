"""Normalization, local-affinity enforcement and integer percentage apportionment."""

from __future__ import annotations

import math
import logging
from typing import Dict, Iterable, List, Sequence, Tuple

from shaper.state import Distribute, NormalizedTraffic, PercentTraffic, TrafficWeight

logger = logging.getLogger(__name__)

DEFAULT_MIN_LOCAL_SHARE = 0.35


def normalize_weights(weights: List[TrafficWeight]) -> List[NormalizedTraffic]:
    """Divide every weight by the global sum. Zero total means nothing to route."""
    total = sum(w.weight for w in weights)
    if total == 0:
        return []
    return [
        NormalizedTraffic(from_node=w.from_node, to_node=w.to_node, share=w.weight / total)
        for w in weights
    ]


def _group_by_source(edges: Iterable) -> Dict[str, list]:
    grouped: Dict[str, list] = {}
    for edge in edges:
        grouped.setdefault(edge.from_node, []).append(edge)
    return grouped


def enforce_local_share(
    edges: List[NormalizedTraffic],
    min_local_share: float = DEFAULT_MIN_LOCAL_SHARE,
) -> List[NormalizedTraffic]:
    """Raise each source's self-routed share up to ``min_local_share``.

    Cross-node edges give up the deficit in proportion to their share of the
    cross traffic. Sources without a local edge, or already above the floor,
    are returned as they are. Input edges are never modified.
    """
    result: List[NormalizedTraffic] = []

    for source, group in _group_by_source(edges).items():
        total = sum(e.share for e in group) or 1.0
        local = next((e for e in group if e.from_node == e.to_node), None)
        local_share = local.share / total if local else 0.0

        if local is None or local_share >= min_local_share:
            result.extend(group)
            continue

        deficit = min_local_share - local_share
        cross_sum = sum(e.share for e in group if e.from_node != e.to_node)

        adjusted: List[Tuple[NormalizedTraffic, float]] = []
        for e in group:
            share = e.share
            if e.from_node == e.to_node:
                share += deficit * total
            elif cross_sum > 0:
                share -= (e.share / cross_sum) * (deficit * total)
            adjusted.append((e, max(0.0, share)))

        new_total = sum(share for _, share in adjusted) or 1.0
        result.extend(
            NormalizedTraffic(from_node=e.from_node, to_node=e.to_node, share=share / new_total)
            for e, share in adjusted
        )
        logger.debug(f"Raised local share of {source} from {local_share:.3f} to {min_local_share:.3f}")

    return result


def apportion(values: Sequence[Tuple[str, float]], total: int = 100) -> List[Tuple[str, int]]:
    """Largest-remainder apportionment of ``values`` onto integers summing to ``total``.

    Leftover units go to the largest fractional remainders; the sort is
    stable, so ties keep their input order. Returns ``[]`` when the values
    sum to zero.
    """
    value_sum = sum(v for _, v in values)
    if not values or value_sum == 0:
        return []

    exact = [(key, v / value_sum * total) for key, v in values]
    floors = [math.floor(x) for _, x in exact]
    deficit = total - sum(floors)

    order = sorted(range(len(exact)), key=lambda i: exact[i][1] - floors[i], reverse=True)
    for i in range(deficit):
        floors[order[i % len(order)]] += 1

    return [(key, floors[i]) for i, (key, _) in enumerate(exact)]


def to_percentages(edges: List[NormalizedTraffic]) -> List[PercentTraffic]:
    """Convert shares into integer percentages that sum to 100 per source node."""
    grouped = _group_by_source(edges)
    out: List[PercentTraffic] = []
    for source in sorted(grouped):
        shares = [(e.to_node, e.share) for e in grouped[source]]
        for to_node, pct in apportion(shares):
            out.append(PercentTraffic(from_node=source, to_node=to_node, percentage=pct))
    return out


def normalize_to_100(mapping: Dict[str, float]) -> Dict[str, int]:
    return dict(apportion(list(mapping.items())))


def percent_list_to_distribute(traffic: List[PercentTraffic]) -> Distribute:
    """Group a flat percentage list by source. Duplicate edges are summed."""
    distribute: Distribute = {}
    for t in traffic:
        targets = distribute.setdefault(t.from_node, {})
        targets[t.to_node] = targets.get(t.to_node, 0) + t.percentage
    return distribute


def distribute_to_percent_list(distribute: Distribute) -> List[PercentTraffic]:
    return [
        PercentTraffic(from_node=source, to_node=target, percentage=int(math.floor(pct + 0.5)))
        for source, targets in distribute.items()
        for target, pct in targets.items()
    ]


def distribute_to_entries(distribute: Distribute) -> List[Dict[str, object]]:
    """The ``[{"from": ..., "to": {...}}]`` shape used by locality settings."""
    return [{"from": source, "to": dict(targets)} for source, targets in distribute.items()]


def entries_to_distribute(entries: Iterable[Dict[str, object]]) -> Distribute:
    distribute: Distribute = {}
    for entry in entries:
        targets = entry.get("to") or {}
        distribute[str(entry["from"])] = {str(k): v for k, v in dict(targets).items()}
    return distribute
