from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests
from flask import Flask, jsonify, request
from kubernetes.client.exceptions import ApiException

from shaper.balancer import OptiBalancer
from shaper.distribution import distribute_to_entries
from shaper.engine import TrafficEngine
from shaper.state import MetricsType, latency_from_dict, pod_from_dict, upstream_from_dict
from shaper.telemetry.prometheus import PrometheusQueryError

logger = logging.getLogger(__name__)

COLLABORATOR_ERRORS = (ApiException, requests.RequestException, PrometheusQueryError)


def create_app(balancer: Optional[OptiBalancer] = None, engine: Optional[TrafficEngine] = None) -> Flask:
	app = Flask(__name__)
	app.config['balancer'] = balancer
	app.config['engine'] = engine or (balancer.engine if balancer else TrafficEngine())

	@app.get("/healthz")
	def healthz() -> Any:
		return jsonify({"status": "ok"})

	@app.post("/distribution")
	def distribution() -> Any:
		"""Compute a target distribution from inline inputs without touching the cluster."""
		body: Dict[str, Any] = request.get_json(force=True, silent=True) or {}
		missing = [k for k in ("pods", "upstream", "latency") if k not in body]
		if missing:
			return jsonify({"error": f"missing fields: {', '.join(missing)}"}), 400

		base: TrafficEngine = app.config['engine']
		engine = base
		if body.get("metric_type"):
			try:
				metric_type = MetricsType(str(body["metric_type"]).lower())
			except ValueError:
				return jsonify({"error": f"unknown metric type: {body['metric_type']}"}), 400
			engine = TrafficEngine(
				metric_type=metric_type,
				weights=base.weights,
				min_local_share=base.min_local_share,
				latency_normalization=base.latency_normalization,
			)

		try:
			pods = [pod_from_dict(p) for p in body["pods"]]
			upstream = [upstream_from_dict(u) for u in body["upstream"]]
			latency = [latency_from_dict(e) for e in body["latency"]]
		except (AttributeError, KeyError, TypeError, ValueError) as e:
			return jsonify({"error": f"invalid payload: {e}"}), 400

		traffic = engine.calculate_traffic(pods, upstream, latency)
		return jsonify({
			"traffic": [
				{"from": t.from_node, "to": t.to_node, "percentage": t.percentage}
				for t in traffic
			],
			"distribute": distribute_to_entries(engine.percent_list_to_distribute(traffic)),
		})

	@app.post("/reconcile")
	def reconcile() -> Any:
		balancer: Optional[OptiBalancer] = app.config['balancer']
		if balancer is None:
			return jsonify({"error": "balancer not configured"}), 503

		body: Dict[str, Any] = request.get_json(force=True, silent=True) or {}
		deployment = body.get("deployment")
		namespace = body.get("namespace")
		if not deployment or not namespace:
			return jsonify({"error": "missing 'deployment' or 'namespace' field"}), 400

		try:
			result = balancer.reconcile(deployment, namespace, dry_run=bool(body.get("dry_run", False)))
		except COLLABORATOR_ERRORS as e:
			logger.error(f"Reconciliation of {namespace}/{deployment} failed: {e}")
			return jsonify({"error": str(e), "deployment": deployment, "namespace": namespace}), 502
		return jsonify(result.to_dict())

	return app
