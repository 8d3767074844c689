"""Gunicorn configuration for the traffic shaper API."""
import os
import sys

# Gunicorn config variables
bind = os.getenv("SHAPER_BIND", "0.0.0.0:8080")
workers = int(os.getenv("SHAPER_WORKERS", "2"))
# A reconciliation waits on Kubernetes and Prometheus round trips
timeout = 120
worker_class = "sync"
preload_app = False  # Each worker builds its own API clients

def post_worker_init(worker):
    """Called just after a worker has initialized the application."""
    app = getattr(worker, "app", None)
    wsgi = getattr(app, "wsgi", None) if app else None
    flask_app = wsgi() if callable(wsgi) else None
    if flask_app is not None and flask_app.config.get("balancer") is not None:
        print(f"[Worker {worker.pid}] Balancer ready", file=sys.stderr, flush=True)
    else:
        print(f"[Worker {worker.pid}] WARNING: No balancer found in app.config", file=sys.stderr, flush=True)
