from __future__ import annotations

import os
import logging
from pathlib import Path

from shaper import configure_logging
from shaper.api import create_app
from shaper.balancer import OptiBalancer
from shaper.config import BalancerConfig

logger = logging.getLogger(__name__)


def build_app():
	"""Build the Flask app with live Kubernetes and Prometheus collaborators."""
	configure_logging(os.getenv("SHAPER_LOG_LEVEL", "INFO"))
	cfg = BalancerConfig.load()

	if not cfg.latency_matrix_path:
		default_path = os.getenv(
			"LATENCY_MATRIX_PATH",
			str(Path(__file__).parent / "deploy" / "latency-matrix.yaml")
		)
		if os.path.exists(default_path):
			cfg.latency_matrix_path = default_path
			logger.info(f"Using latency matrix: {default_path}")
		else:
			logger.info("Latency matrix not found, using default latencies")

	return create_app(OptiBalancer.from_config(cfg))


# Build app at module level (for gunicorn)
app = build_app()


if __name__ == "__main__":
	app.run(host="0.0.0.0", port=8080)
