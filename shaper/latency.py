"""Node-to-node latency matrix loaded from YAML."""

from __future__ import annotations

import yaml
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from shaper.state import LatencyEdge

logger = logging.getLogger(__name__)


class LatencyMatrix:
    """Directed latencies between nodes.

    File format::

        default_latency_ms: 100
        intra_node_latency_ms: 0.5
        latencies:
          - {from: node-a, to: node-b, latency_ms: 30}
          - {from: node-b, to: node-c, latency_ms: 12, symmetric: true}
    """

    def __init__(
        self,
        latencies: Optional[Dict[Tuple[str, str], float]] = None,
        default_latency_ms: float = 100.0,
        intra_node_latency_ms: float = 0.5,
    ) -> None:
        self.latencies: Dict[Tuple[str, str], float] = dict(latencies or {})
        self.default_latency_ms = default_latency_ms
        self.intra_node_latency_ms = intra_node_latency_ms

    @classmethod
    def from_yaml(cls, path: str) -> "LatencyMatrix":
        """
        Load a latency matrix file.

        Args:
            path: Path to the latency matrix YAML file

        Raises:
            OSError: If the file cannot be read
            ValueError: If an entry is malformed
        """
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        matrix = cls(
            default_latency_ms=float(data.get('default_latency_ms', 100.0)),
            intra_node_latency_ms=float(data.get('intra_node_latency_ms', 0.5)),
        )
        entries = data.get('latencies', []) or []
        for entry in entries:
            try:
                src = entry['from']
                dst = entry['to']
                latency = float(entry['latency_ms'])
            except (KeyError, TypeError) as e:
                raise ValueError(f"Malformed latency entry {entry!r} in {path}") from e
            matrix.latencies[(src, dst)] = latency
            if entry.get('symmetric', False):
                matrix.latencies[(dst, src)] = latency

        logger.info(f"Loaded latency matrix: {len(entries)} entries, default={matrix.default_latency_ms}ms")
        return matrix

    def get_latency_between(self, node_a: str, node_b: str) -> float:
        key = (node_a, node_b)
        if key in self.latencies:
            return self.latencies[key]
        if node_a == node_b:
            return self.intra_node_latency_ms
        logger.debug(f"Latency not found for {node_a} -> {node_b}, using default {self.default_latency_ms}ms")
        return self.default_latency_ms

    def edges(self, nodes: Iterable[str]) -> List[LatencyEdge]:
        """One directed edge per ordered pair of ``nodes`` (self pairs included)."""
        unique = list(dict.fromkeys(nodes))
        return [
            LatencyEdge(from_node=a, to_node=b, latency=self.get_latency_between(a, b))
            for a in unique
            for b in unique
        ]
