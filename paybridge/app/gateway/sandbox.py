"""In-memory processor gateway for local development and tests."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple
from uuid import uuid4

from .errors import CatalogConflict, InvalidReference, PaymentDeclined, ProcessorError
from .models import (
    Charge,
    Customer,
    EphemeralKey,
    Invoice,
    InvoiceItem,
    PaymentIntent,
    PaymentMethod,
    PaymentSource,
    Price,
    Product,
    RecurringInterval,
    Subscription,
    SubscriptionItem,
    SubscriptionStatus,
    TaxRate,
    USER_ID_METADATA_KEY,
)

_MUTABLE_PRICE_FIELDS = {"active", "metadata"}
_MUTABLE_PRODUCT_FIELDS = {"name", "metadata", "active"}
_MUTABLE_TAX_RATE_FIELDS = {"active", "display_name", "description", "jurisdiction", "metadata"}


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:16]}"


def _merge_metadata(current: Dict[str, str], update: Mapping[str, Any]) -> Dict[str, str]:
    """Merge metadata the way the processor does: empty values remove keys."""

    merged = dict(current)
    for key, value in update.items():
        if value in (None, ""):
            merged.pop(key, None)
        else:
            merged[str(key)] = str(value)
    return merged


class SandboxGateway:
    """Minimal processor simulation that enforces references and lifecycle rules.

    Every call is recorded in ``calls`` as ``(operation, params)``. Failures can
    be injected per operation and resource with :meth:`fail`. Invoices issued
    by ``invoice_now`` cancellation are collected immediately and stay open
    when the customer declines.
    """

    name = "sandbox"

    def __init__(self, *, api_version: str = "2022-11-15") -> None:
        self.api_version = api_version
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.customers: Dict[str, Customer] = {}
        self.payment_methods: Dict[str, List[PaymentMethod]] = {}
        self.products: Dict[str, Product] = {}
        self.prices: Dict[str, Price] = {}
        self.subscriptions: Dict[str, Subscription] = {}
        self.billing_cycle_anchors: Dict[str, datetime] = {}
        self.invoices: Dict[str, Invoice] = {}
        self.invoice_items: Dict[str, InvoiceItem] = {}
        self.payment_intents: Dict[str, PaymentIntent] = {}
        self.charges: Dict[str, Charge] = {}
        self.tax_rates: Dict[str, TaxRate] = {}
        self.declining_customers: Set[str] = set()
        self._failures: Dict[Tuple[str, Optional[str]], Exception] = {}

    # Test helpers

    def fail(self, operation: str, resource_id: Optional[str] = None, error: Optional[Exception] = None) -> None:
        """Make ``operation`` (optionally for one resource) raise ``error``."""

        self._failures[(operation, resource_id)] = error or ProcessorError(
            f"Injected failure for {operation}", resource_id=resource_id
        )

    def decline_payments_for(self, customer_id: str) -> None:
        self.declining_customers.add(customer_id)

    def attach_payment_method(
        self,
        customer_id: str,
        *,
        type: str = "card",
        brand: str = "visa",
        last4: str = "4242",
    ) -> PaymentMethod:
        method = PaymentMethod(
            payment_method_id=_new_id("pm"),
            type=type,
            customer_id=customer_id,
            card_brand=brand if type == "card" else None,
            card_last4=last4 if type == "card" else None,
            exp_month=12 if type == "card" else None,
            exp_year=datetime.now(timezone.utc).year + 3 if type == "card" else None,
        )
        self.payment_methods.setdefault(customer_id, []).append(method)
        return method

    def operations(self, name: str) -> List[Dict[str, Any]]:
        """Return the recorded params of every call to ``name``."""

        return [params for operation, params in self.calls if operation == name]

    async def _record(self, operation: str, resource_id: Optional[str] = None, **params: Any) -> None:
        self.calls.append((operation, params))
        await asyncio.sleep(0)
        error = self._failures.get((operation, resource_id)) or self._failures.get((operation, None))
        if error is not None:
            raise error

    def _customer(self, customer_id: str) -> Customer:
        customer = self.customers.get(customer_id)
        if customer is None:
            raise InvalidReference(f"No such customer: '{customer_id}'", resource_id=customer_id)
        return customer

    def _product(self, product_id: str) -> Product:
        product = self.products.get(product_id)
        if product is None:
            raise InvalidReference(f"No such product: '{product_id}'", resource_id=product_id)
        return product

    def _price(self, price_id: str) -> Price:
        price = self.prices.get(price_id)
        if price is None:
            raise InvalidReference(f"No such price: '{price_id}'", resource_id=price_id)
        return price

    def _subscription(self, subscription_id: str) -> Subscription:
        subscription = self.subscriptions.get(subscription_id)
        if subscription is None:
            raise InvalidReference(f"No such subscription: '{subscription_id}'", resource_id=subscription_id)
        return subscription

    def _invoice(self, invoice_id: str) -> Invoice:
        invoice = self.invoices.get(invoice_id)
        if invoice is None:
            raise InvalidReference(f"No such invoice: '{invoice_id}'", resource_id=invoice_id)
        return invoice

    def _live_subscription(self, subscription_id: str) -> Subscription:
        subscription = self._subscription(subscription_id)
        if subscription.is_terminal:
            raise ProcessorError(
                "A canceled subscription can only update its cancellation_details and metadata.",
                resource_id=subscription_id,
            )
        return subscription

    # Customers

    async def create_customer(
        self,
        *,
        name: Optional[str],
        email: Optional[str],
        metadata: Dict[str, str],
        source: Optional[str] = None,
    ) -> Customer:
        await self._record("customer.create", name=name, email=email, metadata=metadata, source=source)
        raw_user_id = metadata.get(USER_ID_METADATA_KEY)
        customer = Customer(
            customer_id=_new_id("cus"),
            user_id=int(raw_user_id) if raw_user_id else None,
            email=email,
            name=name,
            default_source=source,
            sources=[PaymentSource(source_id=source)] if source else [],
            metadata=dict(metadata),
        )
        self.customers[customer.customer_id] = customer
        return customer

    async def retrieve_customer(self, customer_id: str, *, expand: Sequence[str] = ()) -> Customer:
        await self._record("customer.retrieve", customer_id, customer_id=customer_id, expand=list(expand))
        customer = self._customer(customer_id)
        if "sources" not in expand:
            return customer.model_copy(update={"sources": []})
        return customer

    async def list_payment_methods(self, customer_id: str, *, type: str) -> List[PaymentMethod]:
        await self._record("payment_method.list", customer_id, customer=customer_id, type=type)
        self._customer(customer_id)
        return [method for method in self.payment_methods.get(customer_id, []) if method.type == type]

    async def create_ephemeral_key(self, customer_id: str) -> EphemeralKey:
        await self._record(
            "ephemeral_key.create", customer_id, customer=customer_id, stripe_version=self.api_version
        )
        self._customer(customer_id)
        return EphemeralKey(
            key_id=_new_id("ephkey"),
            secret=f"ek_test_{uuid4().hex}",
            customer_id=customer_id,
            api_version=self.api_version,
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

    # Catalog

    async def create_product(self, *, name: str, metadata: Optional[Dict[str, str]] = None) -> Product:
        await self._record("product.create", name=name, metadata=metadata)
        product = Product(product_id=_new_id("prod"), name=name, metadata=dict(metadata or {}))
        self.products[product.product_id] = product
        return product

    async def update_product(self, product_id: str, patch: Mapping[str, Any]) -> Product:
        await self._record("product.update", product_id, product_id=product_id, **patch)
        product = self._product(product_id)
        unknown = set(patch) - _MUTABLE_PRODUCT_FIELDS
        if unknown:
            raise ProcessorError(f"Received unknown parameter: {sorted(unknown)[0]}", resource_id=product_id)
        update: Dict[str, Any] = {key: value for key, value in patch.items() if key != "metadata"}
        if "metadata" in patch:
            update["metadata"] = _merge_metadata(product.metadata, patch["metadata"] or {})
        updated = product.model_copy(update=update)
        self.products[product_id] = updated
        return updated

    async def delete_product(self, product_id: str) -> Product:
        await self._record("product.delete", product_id, product_id=product_id)
        self._product(product_id)
        if any(price.product_id == product_id for price in self.prices.values()):
            raise CatalogConflict(
                "This product cannot be deleted because it has one or more user-created prices.",
                resource_id=product_id,
            )
        del self.products[product_id]
        return Product(product_id=product_id, active=False, deleted=True)

    async def list_products(self) -> List[Product]:
        await self._record("product.list")
        return list(self.products.values())

    async def create_price(
        self,
        *,
        product_id: str,
        unit_amount: int,
        currency: str,
        recurring: RecurringInterval,
    ) -> Price:
        await self._record(
            "price.create",
            product_id,
            product=product_id,
            unit_amount=unit_amount,
            currency=currency,
            recurring={"interval": recurring.interval, "interval_count": recurring.interval_count},
        )
        self._product(product_id)
        price = Price(
            price_id=_new_id("price"),
            product_id=product_id,
            unit_amount=unit_amount,
            currency=currency,
            recurring=recurring,
        )
        self.prices[price.price_id] = price
        return price

    async def update_price(self, price_id: str, patch: Mapping[str, Any]) -> Price:
        await self._record("price.update", price_id, price_id=price_id, **patch)
        price = self._price(price_id)
        immutable = set(patch) - _MUTABLE_PRICE_FIELDS
        if immutable:
            raise ProcessorError(f"Received unknown parameter: {sorted(immutable)[0]}", resource_id=price_id)
        update: Dict[str, Any] = {}
        if "active" in patch:
            update["active"] = bool(patch["active"])
        if "metadata" in patch:
            update["metadata"] = _merge_metadata(price.metadata, patch["metadata"] or {})
        updated = price.model_copy(update=update)
        self.prices[price_id] = updated
        return updated

    async def list_prices(self, *, product_id: Optional[str] = None) -> List[Price]:
        await self._record("price.list", product_id, product=product_id)
        return [price for price in self.prices.values() if product_id is None or price.product_id == product_id]

    # Subscriptions

    async def create_subscription(
        self,
        *,
        customer_id: str,
        items: Sequence[Mapping[str, Any]],
        metadata: Dict[str, str],
    ) -> Subscription:
        await self._record(
            "subscription.create",
            customer_id,
            customer=customer_id,
            items=[dict(item) for item in items],
            metadata=metadata,
        )
        self._customer(customer_id)
        subscription_id = _new_id("sub")
        sub_items = []
        for item in items:
            price = self._price(item["price"])
            if not price.active:
                raise ProcessorError(
                    f"The price specified is inactive: '{price.price_id}'", resource_id=price.price_id
                )
            sub_items.append(
                SubscriptionItem(item_id=_new_id("si"), subscription_id=subscription_id, price_id=price.price_id)
            )
        subscription = Subscription(
            subscription_id=subscription_id,
            customer_id=customer_id,
            status=SubscriptionStatus.ACTIVE,
            raw_status=SubscriptionStatus.ACTIVE.value,
            items=sub_items,
            metadata=dict(metadata),
            current_period_end=datetime.now(timezone.utc) + timedelta(days=30),
        )
        self.subscriptions[subscription_id] = subscription
        return subscription

    async def update_subscription(self, subscription_id: str, patch: Mapping[str, Any]) -> Subscription:
        await self._record("subscription.update", subscription_id, subscription_id=subscription_id, **patch)
        if set(patch) <= {"metadata"}:
            subscription = self._subscription(subscription_id)
        else:
            subscription = self._live_subscription(subscription_id)
        update: Dict[str, Any] = {}
        if "metadata" in patch:
            update["metadata"] = _merge_metadata(subscription.metadata, patch["metadata"] or {})
        if "items" in patch:
            update["items"] = self._apply_item_changes(subscription, patch["items"])
        if "cancel_at_period_end" in patch:
            update["cancel_at_period_end"] = bool(patch["cancel_at_period_end"])
        if "pause_collection" in patch:
            pause = patch["pause_collection"]
            update["pause_behavior"] = pause.get("behavior") if isinstance(pause, Mapping) else None
        updated = subscription.model_copy(update=update)
        self.subscriptions[subscription_id] = updated
        return updated

    def _apply_item_changes(
        self, subscription: Subscription, changes: Sequence[Mapping[str, Any]]
    ) -> List[SubscriptionItem]:
        items = {item.item_id: item for item in subscription.items}
        for change in changes:
            item_id = change.get("id")
            if item_id is not None and item_id not in items:
                raise InvalidReference(f"No such subscription item: '{item_id}'", resource_id=item_id)
            if change.get("deleted"):
                items.pop(item_id, None)
                continue
            price = self._price(change["price"])
            if item_id is None:
                item_id = _new_id("si")
            items[item_id] = SubscriptionItem(
                item_id=item_id, subscription_id=subscription.subscription_id, price_id=price.price_id
            )
        return list(items.values())

    async def retrieve_subscription(self, subscription_id: str) -> Subscription:
        await self._record("subscription.retrieve", subscription_id, subscription_id=subscription_id)
        return self._subscription(subscription_id)

    async def cancel_subscription(self, subscription_id: str, *, invoice_now: bool) -> Subscription:
        await self._record(
            "subscription.cancel", subscription_id, subscription_id=subscription_id, invoice_now=invoice_now
        )
        subscription = self._live_subscription(subscription_id)
        update: Dict[str, Any] = {
            "status": SubscriptionStatus.CANCELED,
            "raw_status": SubscriptionStatus.CANCELED.value,
            "pause_behavior": None,
        }
        if invoice_now:
            invoice = self._issue_final_invoice(subscription)
            update["latest_invoice_id"] = invoice.invoice_id
        canceled = subscription.model_copy(update=update)
        self.subscriptions[subscription_id] = canceled
        return canceled

    def _issue_final_invoice(self, subscription: Subscription) -> Invoice:
        pending = [
            item
            for item in self.invoice_items.values()
            if item.customer_id == subscription.customer_id and item.invoice_id is None
        ]
        invoice_id = _new_id("in")
        lines = [item.model_copy(update={"invoice_id": invoice_id}) for item in pending]
        for line in lines:
            self.invoice_items[line.item_id] = line
        invoice = Invoice(
            invoice_id=invoice_id,
            customer_id=subscription.customer_id,
            subscription_id=subscription.subscription_id,
            status="open",
            amount_due=sum(line.amount for line in lines),
            lines=lines,
        )
        # A declined final payment leaves the invoice open; the cancellation still stands.
        if invoice.customer_id not in self.declining_customers:
            self._charge(invoice)
            invoice = invoice.model_copy(update={"status": "paid"})
        self.invoices[invoice_id] = invoice
        return invoice

    def _charge(self, invoice: Invoice) -> Charge:
        charge = Charge(
            charge_id=_new_id("ch"),
            amount=invoice.amount_due,
            currency=invoice.currency,
            status="succeeded",
            paid=True,
            customer_id=invoice.customer_id,
            description=f"Payment for invoice {invoice.invoice_id}",
        )
        self.charges[charge.charge_id] = charge
        return charge

    async def resume_subscription(self, subscription_id: str, *, billing_cycle_anchor: str) -> Subscription:
        await self._record(
            "subscription.resume",
            subscription_id,
            subscription_id=subscription_id,
            billing_cycle_anchor=billing_cycle_anchor,
        )
        subscription = self._live_subscription(subscription_id)
        if not subscription.is_paused:
            raise ProcessorError("Subscription is not paused.", resource_id=subscription_id)
        if billing_cycle_anchor == "now":
            self.billing_cycle_anchors[subscription_id] = datetime.now(timezone.utc)
        resumed = subscription.model_copy(
            update={
                "status": SubscriptionStatus.ACTIVE,
                "raw_status": SubscriptionStatus.ACTIVE.value,
                "pause_behavior": None,
            }
        )
        self.subscriptions[subscription_id] = resumed
        return resumed

    async def list_subscriptions(self, *, customer_id: str) -> List[Subscription]:
        await self._record("subscription.list", customer_id, customer=customer_id)
        return [sub for sub in self.subscriptions.values() if sub.customer_id == customer_id]

    async def create_subscription_item(self, *, subscription_id: str, price_id: str) -> SubscriptionItem:
        await self._record(
            "subscription_item.create", subscription_id, subscription=subscription_id, price=price_id
        )
        subscription = self._live_subscription(subscription_id)
        price = self._price(price_id)
        if price.price_id in subscription.price_ids:
            raise ProcessorError(
                "Cannot add multiple subscription items with the same price.", resource_id=price_id
            )
        item = SubscriptionItem(item_id=_new_id("si"), subscription_id=subscription_id, price_id=price_id)
        self.subscriptions[subscription_id] = subscription.model_copy(
            update={"items": [*subscription.items, item]}
        )
        return item

    async def delete_subscription_item(self, item_id: str) -> SubscriptionItem:
        await self._record("subscription_item.delete", item_id, item_id=item_id)
        for subscription in self.subscriptions.values():
            remaining = [item for item in subscription.items if item.item_id != item_id]
            if len(remaining) == len(subscription.items):
                continue
            if not remaining:
                raise ProcessorError(
                    "A subscription must have at least one active plan.", resource_id=item_id
                )
            self.subscriptions[subscription.subscription_id] = subscription.model_copy(update={"items": remaining})
            return SubscriptionItem(item_id=item_id, subscription_id=subscription.subscription_id, deleted=True)
        raise InvalidReference(f"No such subscription item: '{item_id}'", resource_id=item_id)

    # Invoicing

    async def create_invoice(
        self,
        *,
        customer_id: str,
        subscription_id: Optional[str],
        auto_advance: bool,
    ) -> Invoice:
        await self._record(
            "invoice.create",
            customer_id,
            customer=customer_id,
            subscription=subscription_id,
            auto_advance=auto_advance,
        )
        self._customer(customer_id)
        if subscription_id is not None:
            self._subscription(subscription_id)
        invoice = Invoice(
            invoice_id=_new_id("in"),
            customer_id=customer_id,
            subscription_id=subscription_id,
            auto_advance=auto_advance,
        )
        self.invoices[invoice.invoice_id] = invoice
        return invoice

    async def pay_invoice(self, invoice_id: str) -> Invoice:
        await self._record("invoice.pay", invoice_id, invoice_id=invoice_id)
        invoice = self._invoice(invoice_id)
        if invoice.is_paid:
            raise ProcessorError("Invoice is already paid", resource_id=invoice_id)
        if invoice.customer_id in self.declining_customers:
            self.invoices[invoice_id] = invoice.model_copy(update={"status": "open"})
            raise PaymentDeclined("Your card was declined.", resource_id=invoice_id, decline_code="generic_decline")
        self._charge(invoice)
        paid = invoice.model_copy(update={"status": "paid"})
        self.invoices[invoice_id] = paid
        return paid

    async def retrieve_invoice(self, invoice_id: str) -> Invoice:
        await self._record("invoice.retrieve", invoice_id, invoice_id=invoice_id)
        return self._invoice(invoice_id)

    async def create_invoice_item(
        self,
        *,
        customer_id: str,
        amount: int,
        currency: str,
        description: Optional[str],
        invoice_id: Optional[str] = None,
    ) -> InvoiceItem:
        await self._record(
            "invoice_item.create",
            customer_id,
            customer=customer_id,
            amount=amount,
            currency=currency,
            description=description,
            invoice=invoice_id,
        )
        self._customer(customer_id)
        item = InvoiceItem(
            item_id=_new_id("ii"),
            customer_id=customer_id,
            invoice_id=invoice_id,
            amount=amount,
            currency=currency,
            description=description,
        )
        if invoice_id is not None:
            invoice = self._invoice(invoice_id)
            if invoice.status != "draft":
                raise ProcessorError("Invoice items can only be added to draft invoices.", resource_id=invoice_id)
            self.invoices[invoice_id] = invoice.model_copy(
                update={
                    "lines": [*invoice.lines, item],
                    "amount_due": invoice.amount_due + amount,
                    "currency": currency,
                }
            )
        self.invoice_items[item.item_id] = item
        return item

    async def list_invoice_items(self, *, invoice_id: str) -> List[InvoiceItem]:
        await self._record("invoice_item.list", invoice_id, invoice=invoice_id)
        return [item for item in self.invoice_items.values() if item.invoice_id == invoice_id]

    # Payments

    async def create_payment_intent(self, *, customer_id: str, amount: int, currency: str) -> PaymentIntent:
        await self._record(
            "payment_intent.create", customer_id, customer=customer_id, amount=amount, currency=currency
        )
        self._customer(customer_id)
        intent_id = _new_id("pi")
        intent = PaymentIntent(
            intent_id=intent_id,
            amount=amount,
            currency=currency,
            status="requires_payment_method",
            customer_id=customer_id,
            client_secret=f"{intent_id}_secret_{uuid4().hex[:12]}",
        )
        self.payment_intents[intent_id] = intent
        return intent

    async def retrieve_charge(self, charge_id: str) -> Charge:
        await self._record("charge.retrieve", charge_id, charge_id=charge_id)
        charge = self.charges.get(charge_id)
        if charge is None:
            raise InvalidReference(f"No such charge: '{charge_id}'", resource_id=charge_id)
        return charge

    # Tax rates

    async def create_tax_rate(self, params: Mapping[str, Any]) -> TaxRate:
        await self._record("tax_rate.create", **params)
        if "display_name" not in params or "percentage" not in params:
            raise ProcessorError("Missing required param: display_name or percentage")
        tax_rate = TaxRate(
            tax_rate_id=_new_id("txr"),
            display_name=params["display_name"],
            percentage=float(params["percentage"]),
            inclusive=bool(params.get("inclusive", False)),
            active=bool(params.get("active", True)),
            jurisdiction=params.get("jurisdiction"),
            description=params.get("description"),
        )
        self.tax_rates[tax_rate.tax_rate_id] = tax_rate
        return tax_rate

    async def list_tax_rates(self) -> List[TaxRate]:
        await self._record("tax_rate.list")
        return list(self.tax_rates.values())

    async def update_tax_rate(self, tax_rate_id: str, patch: Mapping[str, Any]) -> TaxRate:
        await self._record("tax_rate.update", tax_rate_id, tax_rate_id=tax_rate_id, **patch)
        tax_rate = self.tax_rates.get(tax_rate_id)
        if tax_rate is None:
            raise InvalidReference(f"No such tax rate: '{tax_rate_id}'", resource_id=tax_rate_id)
        immutable = set(patch) - _MUTABLE_TAX_RATE_FIELDS
        if immutable:
            raise ProcessorError(f"Received unknown parameter: {sorted(immutable)[0]}", resource_id=tax_rate_id)
        updated = tax_rate.model_copy(update={key: value for key, value in patch.items() if key != "metadata"})
        self.tax_rates[tax_rate_id] = updated
        return updated


__all__ = ["SandboxGateway"]
