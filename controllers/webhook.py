# controllers/webhook.py
from __future__ import annotations
from flask import Blueprint, request, jsonify, current_app
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from services.data_sources import get_store
from services.metrics import WEBHOOK_EVENTS
from services.payments.config import cfg, cfg_bool
from services.payments.errors import FeatureDisabled
from services.payments.webhooks import PROVIDER, handle_webhook

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhook")

# per source IP; storage comes from RATELIMIT_STORAGE_URI
limiter = Limiter(key_func=get_remote_address, default_limits=[])


def _webhook_rate() -> str:
    return cfg("WEBHOOK_RATE_LIMIT") or "30 per minute"


def _rate_limit_off() -> bool:
    return not cfg_bool("WEBHOOK_RATE_LIMIT_ENABLED", True)


def rate_limited(e):
    current_app.logger.warning("Webhook rate limit exceeded for %s (%s)",
                               get_remote_address(), e.description)
    WEBHOOK_EVENTS.labels(provider=PROVIDER, event="unknown", outcome="rate_limited").inc()
    return jsonify({
        "success": False,
        "message": "Too many webhook requests",
        "error": "RATE_LIMIT_EXCEEDED",
        "retryable": True,
        "retryAfter": "1 minute",
    }), 429


@webhook_bp.before_request
def _feature_flag():
    if request.endpoint == "webhook.health":
        return
    if not cfg_bool("RAZORPAY_ENABLED", True):
        raise FeatureDisabled("Payments are currently disabled")


# ----- provider webhook (no auth, signature-verified) -----

@webhook_bp.post("/razorpay")
@limiter.limit(_webhook_rate, exempt_when=_rate_limit_off)
def razorpay_webhook():
    # raw bytes: the signature covers exactly what Razorpay sent
    raw = request.get_data(cache=True, as_text=False)
    outcome = handle_webhook(
        get_store(), raw,
        request.headers.get("X-Razorpay-Signature"),
        secret=cfg("RAZORPAY_WEBHOOK_SECRET"),
        event_id=request.headers.get("X-Razorpay-Event-Id"),
    )
    return jsonify(outcome.body()), 200


@webhook_bp.get("/razorpay/health")
def health():
    return jsonify({"success": True, "status": "ok", "service": "razorpay-webhook"})
