"""Subscription lifecycle management."""

from .models import PriceSwap
from .service import (
    INVOICE_NOW_ON_CANCEL,
    PAUSE_BEHAVIOR,
    RESUME_BILLING_CYCLE_ANCHOR,
    SubscriptionLifecycleManager,
)

__all__ = [
    "INVOICE_NOW_ON_CANCEL",
    "PAUSE_BEHAVIOR",
    "PriceSwap",
    "RESUME_BILLING_CYCLE_ANCHOR",
    "SubscriptionLifecycleManager",
]
