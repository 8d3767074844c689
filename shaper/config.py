"""Balancer configuration from defaults, an optional YAML file and environment."""

from __future__ import annotations

import os
import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional

import yaml

from shaper.state import MetricsType, MetricWeights
from shaper.scoring import LATENCY_NORMALIZATIONS

logger = logging.getLogger(__name__)

ENV_PREFIX = "SHAPER_"


@dataclass
class BalancerConfig:
    min_local_share: float = 0.35
    step_size: float = 5
    epsilon: float = 1
    change_threshold: float = 10
    metric_type: MetricsType = MetricsType.CPU_MEMORY
    metric_weights: MetricWeights = field(default_factory=MetricWeights)
    latency_normalization: str = "global"
    avg_window: str = "2m"
    backfill_workers: int = 8
    prometheus_url: str = "http://prometheus-server.monitoring.svc:9090"
    latency_matrix_path: Optional[str] = None

    def validate(self) -> "BalancerConfig":
        if not 0.0 <= self.min_local_share <= 1.0:
            raise ValueError(f"min_local_share must be within [0, 1], got {self.min_local_share}")
        if self.step_size <= 0:
            raise ValueError(f"step_size must be positive, got {self.step_size}")
        if self.epsilon < 0:
            raise ValueError(f"epsilon must not be negative, got {self.epsilon}")
        if self.change_threshold < 0:
            raise ValueError(f"change_threshold must not be negative, got {self.change_threshold}")
        if self.latency_normalization not in LATENCY_NORMALIZATIONS:
            raise ValueError(f"Unknown latency normalization: {self.latency_normalization}")
        if self.backfill_workers < 1:
            raise ValueError(f"backfill_workers must be at least 1, got {self.backfill_workers}")
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], base: Optional["BalancerConfig"] = None) -> "BalancerConfig":
        """Overlay ``data`` on ``base`` (or the defaults). Unknown keys are ignored."""
        cfg = base or cls()
        known = {f.name for f in fields(cls)}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key: {key}")
                continue
            setattr(cfg, key, _coerce(key, value, getattr(cfg, key)))
        return cfg

    @classmethod
    def load(cls, path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> "BalancerConfig":
        """
        Build the configuration.

        Args:
            path: YAML file; defaults to ``SHAPER_CONFIG_PATH`` when set
            environ: environment mapping, ``os.environ`` by default

        Returns:
            Validated configuration (env overrides file, file overrides defaults)
        """
        environ = os.environ if environ is None else environ
        cfg = cls()

        path = path or environ.get(f"{ENV_PREFIX}CONFIG_PATH")
        if path:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Config file {path} must contain a mapping")
            cfg = cls.from_mapping(data, cfg)
            logger.info(f"Loaded balancer config from {path}")

        overrides: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name == "metric_weights":
                continue
            raw = environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is not None:
                overrides[f.name] = raw
        cpu_w = environ.get(f"{ENV_PREFIX}CPU_WEIGHT")
        mem_w = environ.get(f"{ENV_PREFIX}MEMORY_WEIGHT")
        if cpu_w is not None or mem_w is not None:
            overrides["metric_weights"] = {
                "cpu": cpu_w if cpu_w is not None else cfg.metric_weights.cpu,
                "memory": mem_w if mem_w is not None else cfg.metric_weights.memory,
            }
        return cls.from_mapping(overrides, cfg).validate()


def _coerce(key: str, value: Any, current: Any) -> Any:
    if key == "metric_type":
        try:
            return value if isinstance(value, MetricsType) else MetricsType(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown metric type: {value}") from None
    if key == "metric_weights":
        if isinstance(value, MetricWeights):
            return value
        if not isinstance(value, Mapping):
            raise ValueError(f"metric_weights must be a mapping, got {value!r}")
        return MetricWeights(cpu=float(value.get("cpu", 1.0)), memory=float(value.get("memory", 1.0)))
    if key == "backfill_workers":
        return int(value)
    if isinstance(current, float) or key in ("step_size", "epsilon", "change_threshold"):
        return float(value)
    if value is None:
        return None
    return str(value)
