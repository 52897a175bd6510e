"""Contract every payment processor integration implements."""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from .models import (
    Charge,
    Customer,
    EphemeralKey,
    Invoice,
    InvoiceItem,
    PaymentIntent,
    PaymentMethod,
    Price,
    Product,
    RecurringInterval,
    Subscription,
    SubscriptionItem,
    TaxRate,
)


class ProcessorGateway(Protocol):
    """Narrow async interface over the remote payment processor.

    Each method is a single remote round trip. Amounts are integer minor
    units; list methods return every page.
    """

    # Customers
    async def create_customer(
        self,
        *,
        name: Optional[str],
        email: Optional[str],
        metadata: Dict[str, str],
        source: Optional[str] = None,
    ) -> Customer:
        ...

    async def retrieve_customer(self, customer_id: str, *, expand: Sequence[str] = ()) -> Customer:
        ...

    async def list_payment_methods(self, customer_id: str, *, type: str) -> List[PaymentMethod]:
        ...

    async def create_ephemeral_key(self, customer_id: str) -> EphemeralKey:
        ...

    # Catalog
    async def create_product(self, *, name: str, metadata: Optional[Dict[str, str]] = None) -> Product:
        ...

    async def update_product(self, product_id: str, patch: Mapping[str, Any]) -> Product:
        ...

    async def delete_product(self, product_id: str) -> Product:
        ...

    async def list_products(self) -> List[Product]:
        ...

    async def create_price(
        self,
        *,
        product_id: str,
        unit_amount: int,
        currency: str,
        recurring: RecurringInterval,
    ) -> Price:
        ...

    async def update_price(self, price_id: str, patch: Mapping[str, Any]) -> Price:
        ...

    async def list_prices(self, *, product_id: Optional[str] = None) -> List[Price]:
        ...

    # Subscriptions
    async def create_subscription(
        self,
        *,
        customer_id: str,
        items: Sequence[Mapping[str, Any]],
        metadata: Dict[str, str],
    ) -> Subscription:
        ...

    async def update_subscription(self, subscription_id: str, patch: Mapping[str, Any]) -> Subscription:
        ...

    async def retrieve_subscription(self, subscription_id: str) -> Subscription:
        ...

    async def cancel_subscription(self, subscription_id: str, *, invoice_now: bool) -> Subscription:
        ...

    async def resume_subscription(self, subscription_id: str, *, billing_cycle_anchor: str) -> Subscription:
        ...

    async def list_subscriptions(self, *, customer_id: str) -> List[Subscription]:
        ...

    async def create_subscription_item(self, *, subscription_id: str, price_id: str) -> SubscriptionItem:
        ...

    async def delete_subscription_item(self, item_id: str) -> SubscriptionItem:
        ...

    # Invoicing
    async def create_invoice(
        self,
        *,
        customer_id: str,
        subscription_id: Optional[str],
        auto_advance: bool,
    ) -> Invoice:
        ...

    async def pay_invoice(self, invoice_id: str) -> Invoice:
        ...

    async def retrieve_invoice(self, invoice_id: str) -> Invoice:
        ...

    async def create_invoice_item(
        self,
        *,
        customer_id: str,
        amount: int,
        currency: str,
        description: Optional[str],
        invoice_id: Optional[str] = None,
    ) -> InvoiceItem:
        ...

    async def list_invoice_items(self, *, invoice_id: str) -> List[InvoiceItem]:
        ...

    # Payments
    async def create_payment_intent(self, *, customer_id: str, amount: int, currency: str) -> PaymentIntent:
        ...

    async def retrieve_charge(self, charge_id: str) -> Charge:
        ...

    # Tax rates
    async def create_tax_rate(self, params: Mapping[str, Any]) -> TaxRate:
        ...

    async def list_tax_rates(self) -> List[TaxRate]:
        ...

    async def update_tax_rate(self, tax_rate_id: str, patch: Mapping[str, Any]) -> TaxRate:
        ...


__all__ = ["ProcessorGateway"]
