# services/payments/fulfillment.py
"""
Post-commit follow-ups for a finalized payment (notifications, analytics).

They run on a small thread pool so a slow mail server never holds up the
webhook response. FULFILLMENT_SYNC=1 runs them inline.
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List
import threading

from flask import current_app

from models.store import PaymentIntent
from services.payments.config import cfg_bool

Listener = Callable[[PaymentIntent], None]

_listeners: List[Listener] = []
_pool: ThreadPoolExecutor | None = None
_pool_lock = threading.Lock()


def subscribe(fn: Listener) -> Listener:
    if fn not in _listeners:
        _listeners.append(fn)
    return fn


def unsubscribe(fn: Listener) -> None:
    if fn in _listeners:
        _listeners.remove(fn)


def _executor() -> ThreadPoolExecutor:
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="fulfillment")
        return _pool


def shutdown(wait: bool = True) -> None:
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.shutdown(wait=wait)
            _pool = None


def _run(app, intent: PaymentIntent) -> None:
    with app.app_context():
        for fn in list(_listeners):
            try:
                fn(intent)
            except Exception:
                # one broken listener must not starve the rest
                app.logger.exception("Fulfillment listener %r failed for order %s",
                                     fn, intent.provider_order_id)


def dispatch(intent: PaymentIntent) -> None:
    app = current_app._get_current_object()
    if cfg_bool("FULFILLMENT_SYNC", False):
        _run(app, intent)
    else:
        _executor().submit(_run, app, intent)


@subscribe
def log_enrollment(intent: PaymentIntent) -> None:
    current_app.logger.info("Enrollment ready: user=%s %s/%s (order %s)",
                            intent.user_id, intent.item_type, intent.item_id,
                            intent.provider_order_id)
