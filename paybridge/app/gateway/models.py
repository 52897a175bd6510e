"""Domain models normalized from payment processor objects."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

USER_ID_METADATA_KEY = "userId"
USER_SUBSCRIPTION_ID_METADATA_KEY = "userSubscriptionId"


class _Unset:
    """Marker for keyword arguments the caller did not supply."""

    _instance: Optional["_Unset"] = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


def build_patch(**fields: Any) -> Dict[str, Any]:
    """Return only the fields that were explicitly supplied.

    Falsy values such as ``False``, ``0`` or ``{}`` are kept; only ``UNSET``
    is dropped.
    """

    return {name: value for name, value in fields.items() if value is not UNSET}


def _metadata_int(metadata: Dict[str, str], key: str) -> Optional[int]:
    raw = metadata.get(key)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


class SubscriptionStatus(str, Enum):
    """Subscription status as reported by the processor.

    The processor owns this state machine, so unrecognized values map to
    ``UNKNOWN`` instead of failing validation.
    """

    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    CANCELED = "canceled"
    PAUSED = "paused"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> "SubscriptionStatus":
        return cls.UNKNOWN


class PaymentSource(BaseModel):
    """Legacy payment source attached to a customer."""

    source_id: str
    object: str = "card"
    brand: Optional[str] = None
    last4: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Customer(BaseModel):
    """Processor customer correlated with a domain user."""

    customer_id: str
    user_id: Optional[int] = None
    email: Optional[str] = None
    name: Optional[str] = None
    default_source: Optional[str] = None
    sources: List[PaymentSource] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PaymentMethod(BaseModel):
    """Card payment method attached to a customer."""

    payment_method_id: str
    type: str = "card"
    customer_id: Optional[str] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class EphemeralKey(BaseModel):
    """Short-lived credential handed to a client for direct processor access."""

    key_id: str
    secret: str
    customer_id: str
    api_version: str
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Charge(BaseModel):
    charge_id: str
    amount: int = 0
    currency: str = "usd"
    status: str = "pending"
    paid: bool = False
    customer_id: Optional[str] = None
    description: Optional[str] = None
    failure_message: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PaymentIntent(BaseModel):
    intent_id: str
    amount: int = Field(ge=0)
    currency: str
    status: str
    customer_id: Optional[str] = None
    client_secret: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class TaxRate(BaseModel):
    tax_rate_id: str
    display_name: str
    percentage: float
    inclusive: bool = False
    active: bool = True
    jurisdiction: Optional[str] = None
    description: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Product(BaseModel):
    """Catalog product. ``deleted`` is only set on the result of a hard delete."""

    product_id: str
    name: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    active: bool = True
    deleted: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class RecurringInterval(BaseModel):
    """Billing frequency of a subscription-capable price."""

    interval: Literal["day", "week", "month", "year"]
    interval_count: int = Field(default=1, ge=1)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def coerce(cls, value: Any) -> "RecurringInterval":
        """Accept a model instance or a mapping using either key style."""

        if isinstance(value, RecurringInterval):
            return value
        if isinstance(value, dict):
            return cls(
                interval=value.get("interval"),
                interval_count=value.get("interval_count", value.get("intervalCount", 1)),
            )
        raise TypeError("recurring must be a RecurringInterval or a mapping")


class Price(BaseModel):
    """Catalog price. Amount, currency and interval never change after creation."""

    price_id: str
    product_id: str
    unit_amount: int = Field(ge=0)
    currency: str
    recurring: Optional[RecurringInterval] = None
    active: bool = True
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return value.lower()


class SubscriptionItem(BaseModel):
    item_id: str
    subscription_id: Optional[str] = None
    price_id: Optional[str] = None
    deleted: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Subscription(BaseModel):
    """Normalized subscription state read back from the processor."""

    subscription_id: str
    customer_id: str
    status: SubscriptionStatus = SubscriptionStatus.UNKNOWN
    raw_status: Optional[str] = None
    items: List[SubscriptionItem] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)
    cancel_at_period_end: bool = False
    pause_behavior: Optional[str] = None
    latest_invoice_id: Optional[str] = None
    current_period_end: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def user_id(self) -> Optional[int]:
        return _metadata_int(self.metadata, USER_ID_METADATA_KEY)

    @property
    def user_subscription_id(self) -> Optional[int]:
        return _metadata_int(self.metadata, USER_SUBSCRIPTION_ID_METADATA_KEY)

    @property
    def is_paused(self) -> bool:
        """Return ``True`` when collection is paused or the processor reports paused."""
        return self.pause_behavior is not None or self.status == SubscriptionStatus.PAUSED

    @property
    def is_terminal(self) -> bool:
        return self.status in {SubscriptionStatus.CANCELED, SubscriptionStatus.INCOMPLETE_EXPIRED}

    @property
    def price_ids(self) -> List[str]:
        return [item.price_id for item in self.items if item.price_id and not item.deleted]


class InvoiceItem(BaseModel):
    item_id: str
    customer_id: str
    invoice_id: Optional[str] = None
    amount: int
    currency: str
    description: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return value.lower()


class Invoice(BaseModel):
    """Invoice created by this system. ``auto_advance`` stays false until paid explicitly."""

    invoice_id: str
    customer_id: str
    subscription_id: Optional[str] = None
    status: str = "draft"
    auto_advance: bool = False
    amount_due: int = 0
    currency: str = "usd"
    lines: List[InvoiceItem] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_paid(self) -> bool:
        return self.status == "paid"
