from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class MetricsType(str, Enum):
    CPU = "cpu"
    MEMORY = "memory"
    CPU_MEMORY = "cpu_memory"


@dataclass
class MetricWeights:
    cpu: float = 1.0
    memory: float = 1.0


@dataclass
class ResourcePair:
    cpu: float = 0.0
    memory: float = 0.0


@dataclass
class PercentUsage:
    """Usage as a fraction of the pod limit. ``None`` means unresolved."""

    cpu: Optional[float] = None
    memory: Optional[float] = None
    cpu_and_memory: Optional[float] = None


@dataclass
class PodMetrics:
    pod: str
    node: str
    usage: ResourcePair = field(default_factory=ResourcePair)
    percent_usage: PercentUsage = field(default_factory=PercentUsage)
    requested: ResourcePair = field(default_factory=ResourcePair)
    limits: ResourcePair = field(default_factory=ResourcePair)


@dataclass
class Destination:
    destination_service_name: str
    rps: float = 0.0


@dataclass
class UpstreamGraphEntry:
    """A node that sends traffic toward the destination service."""

    node: str
    destinations: List[Destination] = field(default_factory=list)


@dataclass
class LatencyEdge:
    from_node: str
    to_node: str
    latency: float


@dataclass
class ClusterTopology:
    node: str
    zone: str
    region: str


@dataclass
class TrafficWeight:
    from_node: str
    to_node: str
    weight: float


@dataclass(frozen=True)
class NormalizedTraffic:
    from_node: str
    to_node: str
    share: float


@dataclass
class PercentTraffic:
    from_node: str
    to_node: str
    percentage: int


# from-node -> {to-node: percentage}
Distribute = Dict[str, Dict[str, int]]


@dataclass
class ReconcileRequest:
    """Live inputs for a single reconciliation of one deployment."""

    deployment: str
    namespace: str
    replica_pods: List[PodMetrics] = field(default_factory=list)
    nodes_latency: List[LatencyEdge] = field(default_factory=list)
    cluster_topology: List[ClusterTopology] = field(default_factory=list)


class SkipReason(str, Enum):
    NO_TRAFFIC = "no_traffic"
    NO_DESTINATION = "no_destination"
    INSIGNIFICANT_CHANGE = "insignificant_change"


@dataclass
class ReconcileResult:
    outcome: str  # applied | skipped
    service_name: Optional[str] = None
    reason: Optional[SkipReason] = None
    delta: Optional[float] = None
    destination_rule: Optional[Dict[str, Any]] = None
    bootstrap: bool = False
    dry_run: bool = False

    @property
    def applied(self) -> bool:
        return self.outcome == "applied"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["reason"] = self.reason.value if self.reason else None
        return data


def pod_from_dict(data: Dict[str, Any]) -> PodMetrics:
    """Parse a pod metrics payload (API / fixtures) into ``PodMetrics``."""
    usage = data.get("usage") or {}
    percent = data.get("percent_usage") or data.get("percentUsage") or {}
    requested = data.get("requested") or {}
    limits = data.get("limits") or {}
    return PodMetrics(
        pod=data["pod"],
        node=data["node"],
        usage=ResourcePair(cpu=float(usage.get("cpu", 0.0)), memory=float(usage.get("memory", 0.0))),
        percent_usage=PercentUsage(
            cpu=_optional_float(percent.get("cpu")),
            memory=_optional_float(percent.get("memory")),
            cpu_and_memory=_optional_float(percent.get("cpu_and_memory", percent.get("cpuAndMemory"))),
        ),
        requested=ResourcePair(cpu=float(requested.get("cpu", 0.0)), memory=float(requested.get("memory", 0.0))),
        limits=ResourcePair(cpu=float(limits.get("cpu", 0.0)), memory=float(limits.get("memory", 0.0))),
    )


def upstream_from_dict(data: Dict[str, Any]) -> UpstreamGraphEntry:
    return UpstreamGraphEntry(
        node=data["node"],
        destinations=[
            Destination(
                destination_service_name=d["destination_service_name"],
                rps=float(d.get("rps", 0.0)),
            )
            for d in data.get("destinations", [])
        ],
    )


def latency_from_dict(data: Dict[str, Any]) -> LatencyEdge:
    return LatencyEdge(
        from_node=data["from"],
        to_node=data["to"],
        latency=float(data["latency"]),
    )


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)
