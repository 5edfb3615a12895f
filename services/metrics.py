# services/metrics.py
from __future__ import annotations
import os

os.environ.setdefault("PROMETHEUS_DISABLE_CREATED_SERIES", "1")

from prometheus_client import (  # noqa: E402
    Counter, Histogram, CollectorRegistry,
    generate_latest, CONTENT_TYPE_LATEST,
)

# Use a DEDICATED registry so only our app metrics show up
APP_REGISTRY = CollectorRegistry(auto_describe=True)

# --- Generic HTTP metrics (bind to our registry) ---
REQUEST_COUNT = Counter(
    "http_requests_total", "HTTP requests total",
    ["method", "endpoint", "status"], registry=APP_REGISTRY
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Request latency (seconds)",
    ["endpoint", "method"], registry=APP_REGISTRY,
)

# --- Payments ---
CHECKOUTS = Counter(
    "payments_checkout_total", "Checkout / payment creation attempts",
    ["provider", "outcome"], registry=APP_REGISTRY
)
WEBHOOK_EVENTS = Counter(
    "payments_webhook_events_total", "Webhook events", ["provider", "outcome"], registry=APP_REGISTRY
)
TRANSITIONS = Counter(
    "payments_transitions_total", "Order payment-status transition attempts",
    ["from_status", "to_status", "outcome"], registry=APP_REGISTRY
)
REFUNDS = Counter(
    "payments_refunds_total", "Refund attempts", ["provider", "outcome"], registry=APP_REGISTRY
)


def init_app(app):
    @app.get("/metrics")
    def metrics():
        data = generate_latest(APP_REGISTRY)
        return app.response_class(data, mimetype=CONTENT_TYPE_LATEST)

    # --- pre-warm labeled series so dashboards don't say "No data" ---
    for p in ("idram", "arca"):
        CHECKOUTS.labels(provider=p, outcome="redirect").inc(0)
        WEBHOOK_EVENTS.labels(provider=p, outcome="applied").inc(0)
        WEBHOOK_EVENTS.labels(provider=p, outcome="rejected").inc(0)
    TRANSITIONS.labels(from_status="paid", to_status="failed", outcome="conflict").inc(0)
