# models/audit_store.py
import os
import json
import hmac
import hashlib
import threading
from typing import Any, Optional
from datetime import datetime, timezone
from flask import request, has_request_context, g
from flask_login import current_user

APP_SECRET = (os.getenv("AUDIT_HMAC_SECRET") or "secret-key").encode("utf-8")
ANONYMIZE_IP = os.getenv("AUDIT_ANONYMIZE_IP", "1") == "1"
SCHEMA_VERSION = 1
SIGNING_KEY_ID = os.getenv("AUDIT_HMAC_KEY_ID", "k1")

# read-prev + append must not interleave within a process
_CHAIN_LOCK = threading.Lock()

_ALLOWED_EXTRA_KEYS = {"reason", "note", "order_id", "payment_id", "event_id",
                       "event_type", "amount", "currency", "item_type", "item_id",
                       "outcome", "source", "old", "new"}


def _store(store=None):
    if store is not None:
        return store
    from services.data_sources import get_store
    return get_store()


def _load_keyring() -> dict[str, bytes]:
    ring: dict[str, bytes] = {}
    # Optional ring for rotated keys
    cfg = os.getenv("AUDIT_HMAC_KEYRING", "")
    if cfg:
        for part in cfg.split(","):
            part = part.strip()
            if not part or "=" not in part:
                continue
            kid, sec = part.split("=", 1)
            ring[kid.strip()] = sec.strip().encode("utf-8")
    # Always include current key
    ring[SIGNING_KEY_ID] = APP_SECRET
    return ring


def _ts_to_payload_str(ts_val: Any) -> str:
    """Recreate the exact 'ts' string format used when hashing."""
    if isinstance(ts_val, datetime):
        if ts_val.tzinfo is None:
            # SQLite hands back naive datetimes; they were written as UTC
            ts_val = ts_val.replace(tzinfo=timezone.utc)
        ts_val = ts_val.astimezone(timezone.utc)
        return ts_val.isoformat(timespec="seconds").replace("+00:00", "Z")
    return str(ts_val)


def _rebuild_payload_from_row(r: dict) -> dict:
    return {
        "ts": _ts_to_payload_str(r["ts"]),
        "actor": r.get("actor"),
        "actor_role": r.get("actor_role"),
        "request_id": r.get("request_id"),
        "ip": r.get("ip"),
        "method": r.get("method"),
        "path": r.get("path"),
        "action": r.get("action"),
        "target_type": r.get("target_type"),
        "target_id": r.get("target_id"),
        "outcome": r.get("outcome"),
        "status": r.get("status"),
        "error_code": r.get("error_code"),
        "extra": r.get("extra") or {},
        "schema_version": r.get("schema_version") or SCHEMA_VERSION,
        "key_id": r.get("key_id"),
    }


def verify_chain(limit: Optional[int] = None, store=None) -> dict:
    """
    Return:
      {
        "ok": bool,
        "checked": int,
        "last_ok_id": int | None,
        "first_bad_id": int | None,
        "reason": str | None
      }
    """
    ring = _load_keyring()
    prev = ""
    checked = 0
    last_ok = None

    for r in _store(store).audit_rows(limit):
        payload = _rebuild_payload_from_row(r)
        exp_hash = _compute_hash(prev, payload)

        reason = None
        if (r.get("prev_hash") or "") != prev:
            reason = "prev_hash_mismatch"
        elif r.get("hash") != exp_hash:
            reason = "hash_mismatch"
        else:
            kid = payload.get("key_id") or SIGNING_KEY_ID
            key = ring.get(kid)
            if not key:
                reason = f"missing_key:{kid}"
            elif r.get("signature") != hmac.new(key, exp_hash.encode("utf-8"), hashlib.sha256).hexdigest():
                reason = "signature_mismatch"

        if reason:
            return {
                "ok": False,
                "checked": checked,
                "last_ok_id": last_ok,
                "first_bad_id": r.get("id"),
                "reason": reason,
            }

        # advance
        checked += 1
        last_ok = r.get("id")
        prev = r.get("hash") or ""

    return {
        "ok": True,
        "checked": checked,
        "last_ok_id": last_ok,
        "first_bad_id": None,
        "reason": None,
    }


def _compute_hash(prev_hash: str, payload: dict) -> str:
    s = prev_hash + json.dumps(payload, separators=(",", ":"),
                               sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _sign(h: str) -> str:
    return hmac.new(APP_SECRET, h.encode("utf-8"), hashlib.sha256).hexdigest()


def _anon_ip(ip: str | None) -> str | None:
    if not ip:
        return None
    if not ANONYMIZE_IP:
        return ip
    # Simple IPv4 /24 or IPv6 /48 truncation
    if ":" in ip:
        parts = ip.split(":")
        return ":".join(parts[:3]) + "::"
    quads = ip.split(".")
    return ".".join(quads[:3]) + ".0"


def _clean_extra(extra: Optional[dict[str, Any]]) -> dict:
    if not extra:
        return {}
    out = {}
    for k, v in extra.items():
        if k not in _ALLOWED_EXTRA_KEYS:
            continue
        if isinstance(v, str) and len(v) > 512:
            v = v[:512] + "…"
        out[k] = v
    return out


def audit(
    action: str,
    *,
    target_type: str | None = None,
    target_id: str | None = None,
    outcome: str | None = None,            # 'success'|'failure'|'blocked'|'noop'
    status: int | None = None,
    error_code: str | None = None,
    extra: Optional[dict[str, Any]] = None,
    actor: Optional[str] = None,
    store=None,
) -> None:
    now = datetime.now(timezone.utc).replace(microsecond=0)
    ts = _ts_to_payload_str(now)

    ip = method = path = req_id = None
    if has_request_context():
        fwd = request.headers.get("X-Forwarded-For", "")
        ip = _anon_ip(fwd.split(",")[0].strip() or request.remote_addr)
        method = request.method
        path = request.path
        req_id = getattr(g, "request_id", None) or request.headers.get(
            "X-Request-ID")

    actor_role = None
    if actor is None:
        if has_request_context() and getattr(current_user, "is_authenticated", False):
            actor = current_user.username
            actor_role = current_user.role
        else:
            actor = "anonymous"

    payload = {
        "ts": ts, "actor": actor, "actor_role": actor_role,
        "request_id": req_id, "ip": ip, "method": method, "path": path,
        "action": action, "target_type": target_type, "target_id": target_id,
        "outcome": outcome, "status": status, "error_code": error_code,
        "extra": _clean_extra(extra or {}),
        "schema_version": SCHEMA_VERSION,
        "key_id": SIGNING_KEY_ID,
    }

    st = _store(store)
    with _CHAIN_LOCK:
        prev = st.latest_audit_hash()
        h = _compute_hash(prev, payload)
        st.append_audit({
            "ts": now,
            "actor": actor, "actor_role": actor_role, "request_id": req_id,
            "ip": ip, "method": method, "path": path,
            "action": action, "target_type": target_type, "target_id": target_id,
            "outcome": outcome, "status": status, "error_code": error_code,
            "extra": payload["extra"],
            "prev_hash": prev, "hash": h, "signature": _sign(h),
            "schema_version": SCHEMA_VERSION, "key_id": SIGNING_KEY_ID,
        })
