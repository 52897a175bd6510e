"""Audit events emitted by the billing components."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field


class BillingAuditEventType(str, Enum):
    """Audit event categories emitted by the billing subsystem."""

    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    SUBSCRIPTION_PAUSED = "subscription_paused"
    SUBSCRIPTION_RESUMED = "subscription_resumed"
    PRODUCT_DELETED = "product_deleted"
    PRICES_RETIRED = "prices_retired"
    INVOICE_PAID = "invoice_paid"


class BillingAuditEvent(BaseModel):
    """Structured audit event for analytics and notifications."""

    event_type: BillingAuditEventType
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    resource_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


class NullBillingEventLogger:
    """Discards events; used when no audit sink is wired in."""

    def log(self, event: BillingAuditEvent) -> None:
        return None
