"""Facade composing the billing components over one processor gateway."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..audit import BillingEventLogger, NullBillingEventLogger
from ..catalog import CatalogManager
from ..customers import CustomerAccessor
from ..gateway.protocol import ProcessorGateway
from ..invoicing import InvoicingCoordinator
from ..subscriptions import SubscriptionLifecycleManager


@dataclass(slots=True)
class BillingService:
    """Coordinates catalog, subscriptions, invoicing and customers.

    Holds no state of its own; every component calls through ``gateway``.
    """

    gateway: ProcessorGateway
    catalog: CatalogManager
    subscriptions: SubscriptionLifecycleManager
    invoicing: InvoicingCoordinator
    customers: CustomerAccessor

    @classmethod
    def from_gateway(
        cls,
        gateway: ProcessorGateway,
        *,
        event_logger: Optional[BillingEventLogger] = None,
        retire_concurrency: int = 8,
        default_currency: str = "usd",
    ) -> "BillingService":
        events = event_logger or NullBillingEventLogger()
        return cls(
            gateway=gateway,
            catalog=CatalogManager(
                gateway=gateway,
                event_logger=events,
                retire_concurrency=retire_concurrency,
                default_currency=default_currency,
            ),
            subscriptions=SubscriptionLifecycleManager(gateway=gateway, event_logger=events),
            invoicing=InvoicingCoordinator(gateway=gateway, event_logger=events, default_currency=default_currency),
            customers=CustomerAccessor(gateway=gateway, default_currency=default_currency),
        )


__all__ = ["BillingService"]
