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

# --- Auth ---
LOGIN_SUCCESSES = Counter("auth_login_success_total",
                          "Login successes", registry=APP_REGISTRY)
LOGIN_FAILURES = Counter("auth_login_failure_total", "Login failures", [
                         "reason"], registry=APP_REGISTRY)

# --- Payments / Webhook ---
ORDERS_CREATED = Counter(
    "payments_orders_created_total", "Orders created", ["item_type"], registry=APP_REGISTRY
)
ORDER_FAILURES = Counter(
    "payments_order_failures_total", "Order creation failures", ["reason"], registry=APP_REGISTRY
)
WEBHOOK_EVENTS = Counter(
    "payments_webhook_events_total", "Webhook events", ["provider", "event", "outcome"], registry=APP_REGISTRY
)
VERIFICATIONS = Counter(
    "payments_verifications_total", "Client payment verifications", ["outcome"], registry=APP_REGISTRY
)
ENROLLMENTS_GRANTED = Counter(
    "payments_enrollments_granted_total", "Enrollment grants", ["item_type"], registry=APP_REGISTRY
)


def init_app(app):
    @app.get("/metrics")
    def metrics():
        data = generate_latest(APP_REGISTRY)
        return app.response_class(data, mimetype=CONTENT_TYPE_LATEST)

    # --- pre-warm labeled series so dashboards don't say "No data" ---
    LOGIN_FAILURES.labels(reason="bad_credentials").inc(0)
    for t in ("course", "book", "live_class"):
        ORDERS_CREATED.labels(item_type=t).inc(0)
        ENROLLMENTS_GRANTED.labels(item_type=t).inc(0)
    for o in ("verified", "mismatch", "duplicate"):
        VERIFICATIONS.labels(outcome=o).inc(0)
    WEBHOOK_EVENTS.labels(
        provider="razorpay", event="payment.captured", outcome="applied").inc(0)
