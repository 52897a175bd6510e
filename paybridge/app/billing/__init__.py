"""Billing facade over the processor gateway."""

from .service import BillingService

__all__ = ["BillingService"]
