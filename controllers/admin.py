from flask import Blueprint, jsonify, request
from flask_login import login_required

from controllers.auth import admin_required
from models.audit_store import audit, verify_chain
from models.store import STATUSES
from services.data_sources import get_store
from services.payments.errors import PaymentError
from services.payments.schemas import IntentPage, PageQuery, StatsOut, envelope

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.get("/payments")
@login_required
@admin_required
def list_payments():
    q = PageQuery.model_validate(request.args.to_dict())
    if q.status and q.status not in STATUSES:
        raise PaymentError(f"status must be one of {', '.join(STATUSES)}",
                           error_code="INVALID_FILTER")
    items, total = get_store().list_intents(
        status=q.status, item_type=q.item_type, page=q.page, limit=q.limit)
    return jsonify(envelope(IntentPage.build(items, total, q.page, q.limit)))


@admin_bp.get("/payments/stats")
@login_required
@admin_required
def payment_stats():
    return jsonify(envelope(StatsOut(**get_store().intent_stats())))


@admin_bp.get("/audit/verify")
@login_required
@admin_required
def audit_verify():
    # optional ?limit= param for quick checks
    limit = request.args.get("limit", type=int)
    result = verify_chain(limit=limit)
    status = 200 if result.get("ok") else 409
    audit(
        "audit.verify_chain",
        target_type="scope", target_id="admin",
        outcome="success" if result.get("ok") else "failure",
        status=200,
        extra={"reason": result.get("reason")}
    )
    return jsonify(result), status
