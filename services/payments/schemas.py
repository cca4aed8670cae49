# services/payments/schemas.py
"""
Request / response shapes for the payment API.

This is the one place where wire spelling is normalized: requests may use
camelCase (mobile app) or snake_case (razorpay_* checkout callback fields),
and every response leaves as camelCase.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from models.store import PaymentIntent, ITEM_TYPES
from services.payments.base import ProviderPayment

_ITEM_TYPE_SPELLINGS = {
    "course": "course",
    "book": "book",
    "live_class": "live_class",
    "live-class": "live_class",
    "liveclass": "live_class",
}

# older app builds send the id under a per-type key
_ITEM_ID_KEYS = {
    "course": ("courseId", "course_id"),
    "book": ("bookId", "book_id"),
    "live_class": ("liveClassId", "live_class_id"),
}


def normalize_item_type(value: Any) -> str:
    key = str(value or "").strip().lower()
    if key not in _ITEM_TYPE_SPELLINGS:
        raise ValueError(f"itemType must be one of {', '.join(ITEM_TYPES)}")
    return _ITEM_TYPE_SPELLINGS[key]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True,
                              extra="ignore")

    def dump(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# ----- requests -----

class OrderNotes(CamelModel):
    item_type: str
    item_id: str = Field(min_length=1, max_length=64)
    user_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _item_id_from_typed_key(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if data.get("itemId") or data.get("item_id"):
            return data
        raw_type = data.get("itemType") or data.get("item_type")
        try:
            item_type = normalize_item_type(raw_type)
        except ValueError:
            return data
        for k in _ITEM_ID_KEYS[item_type]:
            if data.get(k):
                return {**data, "itemId": str(data[k])}
        return data

    @field_validator("item_type", mode="before")
    @classmethod
    def _item_type(cls, v: Any) -> str:
        return normalize_item_type(v)

    @field_validator("item_id", mode="before")
    @classmethod
    def _item_id(cls, v: Any) -> Any:
        return str(v).strip() if isinstance(v, (int, str)) else v


class CreateOrderRequest(CamelModel):
    amount: int = Field(gt=0, strict=True)
    currency: str = "INR"
    receipt: Optional[str] = Field(default=None, max_length=200)
    notes: OrderNotes

    @field_validator("currency")
    @classmethod
    def _currency(cls, v: str) -> str:
        v = (v or "").strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("currency must be a 3-letter code")
        return v


class VerifyPaymentRequest(CamelModel):
    order_id: str = Field(min_length=1, validation_alias=AliasChoices(
        "orderId", "order_id", "razorpay_order_id"))
    payment_id: str = Field(min_length=1, validation_alias=AliasChoices(
        "paymentId", "payment_id", "razorpay_payment_id"))
    signature: str = Field(min_length=1, validation_alias=AliasChoices(
        "signature", "razorpay_signature"))


class PageQuery(CamelModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    status: Optional[str] = None
    item_type: Optional[str] = None

    @field_validator("item_type", mode="before")
    @classmethod
    def _item_type(cls, v: Any) -> Optional[str]:
        return normalize_item_type(v) if v else None


# ----- responses -----

class OrderOut(CamelModel):
    order_id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: str
    key_id: Optional[str] = None
    payment_intent_id: int


class IntentOut(CamelModel):
    id: int
    order_id: str
    payment_id: Optional[str] = None
    user_id: str
    item_type: str
    item_id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: str
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_intent(cls, p: PaymentIntent) -> "IntentOut":
        return cls(
            id=p.id, order_id=p.provider_order_id, payment_id=p.provider_payment_id,
            user_id=p.user_id, item_type=p.item_type, item_id=p.item_id,
            amount=p.amount, currency=p.currency, receipt=p.receipt, status=p.status,
            failure_reason=p.failure_reason, created_at=p.created_at, updated_at=p.updated_at,
        )


class PaymentOut(CamelModel):
    payment_id: str
    order_id: Optional[str] = None
    amount: int
    currency: str
    status: str
    method: Optional[str] = None
    captured: bool = False
    error_description: Optional[str] = None
    created_at: Optional[int] = None
    local_status: Optional[str] = None

    @classmethod
    def from_provider(cls, p: ProviderPayment, intent: Optional[PaymentIntent] = None) -> "PaymentOut":
        return cls(
            payment_id=p.payment_id, order_id=p.order_id, amount=p.amount,
            currency=p.currency, status=p.status, method=p.method, captured=p.captured,
            error_description=p.error_description, created_at=p.created_at,
            local_status=intent.status if intent else None,
        )


class VerificationOut(CamelModel):
    order_id: str
    payment_id: str
    verified: bool
    status: Optional[str] = None
    already_processed: bool = False


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int


class IntentPage(CamelModel):
    items: List[IntentOut]
    pagination: Pagination

    @classmethod
    def build(cls, intents: List[PaymentIntent], total: int, page: int, limit: int) -> "IntentPage":
        return cls(
            items=[IntentOut.from_intent(p) for p in intents],
            pagination=Pagination(total=total, page=page, limit=limit,
                                  total_pages=(total + limit - 1) // limit),
        )


class StatsOut(CamelModel):
    total: int
    pending: int
    completed: int
    failed: int
    refunded: int
    total_revenue: int


def envelope(data: Optional[CamelModel | Dict[str, Any]] = None, *, message: Optional[str] = None,
             success: bool = True, **extra: Any) -> dict:
    out: Dict[str, Any] = {"success": success}
    if message:
        out["message"] = message
    if data is not None:
        out["data"] = data.dump() if isinstance(data, CamelModel) else data
    for k, v in extra.items():
        out[to_camel(k)] = v
    return out
