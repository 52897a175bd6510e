"""Billing audit events."""

from .models import BillingAuditEvent, BillingAuditEventType, BillingEventLogger, NullBillingEventLogger

__all__ = [
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingEventLogger",
    "NullBillingEventLogger",
]
