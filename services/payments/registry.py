# services/payments/registry.py
from services.payments.config import cfg
from services.payments.dummy_provider import DummyProvider


def get_provider():
    name = (cfg("PAYMENT_PROVIDER") or "razorpay").lower()
    if name == "dummy":
        return DummyProvider()
    if name == "razorpay":
        from services.payments.razorpay_provider import RazorpayProvider
        return RazorpayProvider()
    raise RuntimeError(f"Unknown PAYMENT_PROVIDER: {name}")
