# services/payments/signature.py
"""
HMAC-SHA256 checks for Razorpay callbacks.

Two schemes:
  - webhooks:  hex(HMAC(webhook_secret, <raw request body bytes>))
  - checkout:  hex(HMAC(key_secret, "<order_id>|<payment_id>"))

The webhook digest is computed over the bytes exactly as received. Parsing
the JSON and dumping it again changes whitespace / key order and produces a
different digest, so callers must hand in request.get_data(), never a
re-serialized payload.
"""

from __future__ import annotations
import hashlib
import hmac
import re

_HEX_SHA256 = re.compile(r"^[0-9a-fA-F]{64}$")


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _well_formed(signature) -> bool:
    return isinstance(signature, str) and bool(_HEX_SHA256.match(signature.strip()))


def verify_webhook_signature(raw_body: bytes, signature_header: str | None, secret: str | None) -> bool:
    """True only if signature_header is the hex HMAC of raw_body. Never raises."""
    if not secret or not isinstance(raw_body, (bytes, bytearray)):
        return False
    if not _well_formed(signature_header):
        return False
    expected = _hmac_hex(secret, bytes(raw_body))
    return hmac.compare_digest(expected, signature_header.strip().lower())


def verify_payment_signature(order_id: str, payment_id: str, signature: str | None, secret: str | None) -> bool:
    if not secret or not order_id or not payment_id or not _well_formed(signature):
        return False
    expected = _hmac_hex(secret, f"{order_id}|{payment_id}".encode("utf-8"))
    return hmac.compare_digest(expected, signature.strip().lower())


def sign_webhook_body(raw_body: bytes, secret: str) -> str:
    return _hmac_hex(secret, raw_body)


def sign_payment(order_id: str, payment_id: str, secret: str) -> str:
    return _hmac_hex(secret, f"{order_id}|{payment_id}".encode("utf-8"))
