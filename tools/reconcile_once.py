#!/usr/bin/env python3
"""Run a single traffic-shaping reconciliation for one deployment.

Example:
    python tools/reconcile_once.py \
        --deployment checkout \
        --namespace shop \
        --config deploy/shaper.yaml \
        --dry-run

The scheduling cadence is left to the caller (cron, CronJob, CI, ...); this
script performs exactly one iteration and prints the outcome as JSON.
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from shaper import configure_logging
from shaper.balancer import OptiBalancer
from shaper.config import BalancerConfig


def main() -> int:
    parser = argparse.ArgumentParser(description="One-shot locality traffic reconciliation")
    parser.add_argument("--deployment", required=True)
    parser.add_argument("--namespace", required=True)
    parser.add_argument("--config", default=None, help="YAML balancer config")
    parser.add_argument("--dry-run", action="store_true", help="compute without applying")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    configure_logging(args.log_level)

    balancer = OptiBalancer.from_config(BalancerConfig.load(args.config))
    result = balancer.reconcile(args.deployment, args.namespace, dry_run=args.dry_run)
    print(json.dumps(result.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
