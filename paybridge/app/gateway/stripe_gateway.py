"""Stripe implementation of the processor gateway."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

import stripe

from .config import GatewayConfig
from .errors import CatalogConflict, InvalidReference, PaymentDeclined, ProcessorError, RemoteUnavailable
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

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PAGE_SIZE = 100


def create_stripe_client(config: GatewayConfig) -> stripe.StripeClient:
    """Build a Stripe client with the credential and API version pinned."""

    if not config.secret_key:
        raise ValueError("STRIPE_SECRET_KEY not configured")
    return stripe.StripeClient(
        config.secret_key,
        stripe_version=config.api_version,
        max_network_retries=config.max_network_retries,
        http_client=stripe.HTTPXClient(),
    )


class StripeGateway:
    """Processor gateway backed by an injected :class:`stripe.StripeClient`."""

    name = "stripe"

    def __init__(self, client: stripe.StripeClient, *, api_version: str) -> None:
        self._client = client
        self.api_version = api_version

    @classmethod
    def from_config(cls, config: GatewayConfig) -> "StripeGateway":
        return cls(create_stripe_client(config), api_version=config.api_version)

    async def _call(
        self,
        operation: str,
        request: Callable[..., Awaitable[T]],
        *args: Any,
        resource_id: Optional[str] = None,
        conflict_on_invalid: bool = False,
        **kwargs: Any,
    ) -> T:
        try:
            return await request(*args, **kwargs)
        except stripe.CardError as exc:
            error = getattr(exc, "error", None)
            raise PaymentDeclined(
                _message(exc),
                resource_id=resource_id,
                decline_code=_field(error, "decline_code") or getattr(exc, "code", None),
            ) from exc
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            logger.debug("Stripe %s unavailable: %s", operation, exc)
            raise RemoteUnavailable(_message(exc), resource_id=resource_id) from exc
        except stripe.InvalidRequestError as exc:
            if getattr(exc, "code", None) == "resource_missing":
                raise InvalidReference(_message(exc), resource_id=resource_id) from exc
            if conflict_on_invalid:
                raise CatalogConflict(_message(exc), resource_id=resource_id) from exc
            raise ProcessorError(_message(exc), resource_id=resource_id) from exc
        except stripe.StripeError as exc:
            logger.debug("Stripe %s failed: %s", operation, exc)
            raise ProcessorError(_message(exc), resource_id=resource_id) from exc

    async def _list_all(self, operation: str, service: Any, params: Dict[str, Any]) -> List[Any]:
        records: List[Any] = []
        starting_after: Optional[str] = None
        while True:
            page_params = {**params, "limit": _PAGE_SIZE}
            if starting_after:
                page_params["starting_after"] = starting_after
            page = await self._call(operation, service.list_async, params=page_params)
            data = list(_field(page, "data", []))
            records.extend(data)
            if not data or not _field(page, "has_more", False):
                return records
            starting_after = _field(data[-1], "id")

    # Customers

    async def create_customer(
        self,
        *,
        name: Optional[str],
        email: Optional[str],
        metadata: Dict[str, str],
        source: Optional[str] = None,
    ) -> Customer:
        params: Dict[str, Any] = {"name": name, "email": email, "metadata": metadata}
        if source:
            params["source"] = source
        customer = await self._call("customer.create", self._client.v1.customers.create_async, params=params)
        return _customer_from_stripe(customer)

    async def retrieve_customer(self, customer_id: str, *, expand: Sequence[str] = ()) -> Customer:
        params = {"expand": list(expand)} if expand else None
        customer = await self._call(
            "customer.retrieve",
            self._client.v1.customers.retrieve_async,
            customer_id,
            params=params,
            resource_id=customer_id,
        )
        return _customer_from_stripe(customer)

    async def list_payment_methods(self, customer_id: str, *, type: str) -> List[PaymentMethod]:
        methods = await self._list_all(
            "payment_method.list",
            self._client.v1.payment_methods,
            {"customer": customer_id, "type": type},
        )
        return [_payment_method_from_stripe(method) for method in methods]

    async def create_ephemeral_key(self, customer_id: str) -> EphemeralKey:
        key = await self._call(
            "ephemeral_key.create",
            self._client.v1.ephemeral_keys.create_async,
            params={"customer": customer_id},
            options={"stripe_version": self.api_version},
            resource_id=customer_id,
        )
        return EphemeralKey(
            key_id=_field(key, "id"),
            secret=_field(key, "secret", ""),
            customer_id=customer_id,
            api_version=self.api_version,
            expires_at=_timestamp(_field(key, "expires")),
        )

    # Catalog

    async def create_product(self, *, name: str, metadata: Optional[Dict[str, str]] = None) -> Product:
        params: Dict[str, Any] = {"name": name}
        if metadata is not None:
            params["metadata"] = metadata
        product = await self._call("product.create", self._client.v1.products.create_async, params=params)
        return _product_from_stripe(product)

    async def update_product(self, product_id: str, patch: Mapping[str, Any]) -> Product:
        product = await self._call(
            "product.update",
            self._client.v1.products.update_async,
            product_id,
            params=dict(patch),
            resource_id=product_id,
        )
        return _product_from_stripe(product)

    async def delete_product(self, product_id: str) -> Product:
        deleted = await self._call(
            "product.delete",
            self._client.v1.products.delete_async,
            product_id,
            resource_id=product_id,
            conflict_on_invalid=True,
        )
        return Product(product_id=_field(deleted, "id", product_id), active=False, deleted=True)

    async def list_products(self) -> List[Product]:
        products = await self._list_all("product.list", self._client.v1.products, {})
        return [_product_from_stripe(product) for product in products]

    async def create_price(
        self,
        *,
        product_id: str,
        unit_amount: int,
        currency: str,
        recurring: RecurringInterval,
    ) -> Price:
        price = await self._call(
            "price.create",
            self._client.v1.prices.create_async,
            params={
                "unit_amount": unit_amount,
                "currency": currency,
                "recurring": {"interval": recurring.interval, "interval_count": recurring.interval_count},
                "product": product_id,
            },
            resource_id=product_id,
        )
        return _price_from_stripe(price)

    async def update_price(self, price_id: str, patch: Mapping[str, Any]) -> Price:
        price = await self._call(
            "price.update",
            self._client.v1.prices.update_async,
            price_id,
            params=dict(patch),
            resource_id=price_id,
        )
        return _price_from_stripe(price)

    async def list_prices(self, *, product_id: Optional[str] = None) -> List[Price]:
        params = {"product": product_id} if product_id else {}
        prices = await self._list_all("price.list", self._client.v1.prices, params)
        return [_price_from_stripe(price) for price in prices]

    # Subscriptions

    async def create_subscription(
        self,
        *,
        customer_id: str,
        items: Sequence[Mapping[str, Any]],
        metadata: Dict[str, str],
    ) -> Subscription:
        subscription = await self._call(
            "subscription.create",
            self._client.v1.subscriptions.create_async,
            params={"customer": customer_id, "items": [dict(item) for item in items], "metadata": metadata},
            resource_id=customer_id,
        )
        return _subscription_from_stripe(subscription)

    async def update_subscription(self, subscription_id: str, patch: Mapping[str, Any]) -> Subscription:
        subscription = await self._call(
            "subscription.update",
            self._client.v1.subscriptions.update_async,
            subscription_id,
            params=dict(patch),
            resource_id=subscription_id,
        )
        return _subscription_from_stripe(subscription)

    async def retrieve_subscription(self, subscription_id: str) -> Subscription:
        subscription = await self._call(
            "subscription.retrieve",
            self._client.v1.subscriptions.retrieve_async,
            subscription_id,
            resource_id=subscription_id,
        )
        return _subscription_from_stripe(subscription)

    async def cancel_subscription(self, subscription_id: str, *, invoice_now: bool) -> Subscription:
        subscription = await self._call(
            "subscription.cancel",
            self._client.v1.subscriptions.cancel_async,
            subscription_id,
            params={"invoice_now": invoice_now},
            resource_id=subscription_id,
        )
        return _subscription_from_stripe(subscription)

    async def resume_subscription(self, subscription_id: str, *, billing_cycle_anchor: str) -> Subscription:
        subscription = await self._call(
            "subscription.resume",
            self._client.v1.subscriptions.resume_async,
            subscription_id,
            params={"billing_cycle_anchor": billing_cycle_anchor},
            resource_id=subscription_id,
        )
        return _subscription_from_stripe(subscription)

    async def list_subscriptions(self, *, customer_id: str) -> List[Subscription]:
        subscriptions = await self._list_all(
            "subscription.list", self._client.v1.subscriptions, {"customer": customer_id}
        )
        return [_subscription_from_stripe(subscription) for subscription in subscriptions]

    async def create_subscription_item(self, *, subscription_id: str, price_id: str) -> SubscriptionItem:
        item = await self._call(
            "subscription_item.create",
            self._client.v1.subscription_items.create_async,
            params={"subscription": subscription_id, "price": price_id},
            resource_id=subscription_id,
        )
        return _subscription_item_from_stripe(item, subscription_id=subscription_id)

    async def delete_subscription_item(self, item_id: str) -> SubscriptionItem:
        deleted = await self._call(
            "subscription_item.delete",
            self._client.v1.subscription_items.delete_async,
            item_id,
            resource_id=item_id,
        )
        return SubscriptionItem(item_id=_field(deleted, "id", item_id), deleted=True)

    # Invoicing

    async def create_invoice(
        self,
        *,
        customer_id: str,
        subscription_id: Optional[str],
        auto_advance: bool,
    ) -> Invoice:
        params: Dict[str, Any] = {"customer": customer_id, "auto_advance": auto_advance}
        if subscription_id:
            params["subscription"] = subscription_id
        invoice = await self._call(
            "invoice.create", self._client.v1.invoices.create_async, params=params, resource_id=customer_id
        )
        return _invoice_from_stripe(invoice)

    async def pay_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self._call(
            "invoice.pay", self._client.v1.invoices.pay_async, invoice_id, resource_id=invoice_id
        )
        return _invoice_from_stripe(invoice)

    async def retrieve_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self._call(
            "invoice.retrieve", self._client.v1.invoices.retrieve_async, invoice_id, resource_id=invoice_id
        )
        return _invoice_from_stripe(invoice)

    async def create_invoice_item(
        self,
        *,
        customer_id: str,
        amount: int,
        currency: str,
        description: Optional[str],
        invoice_id: Optional[str] = None,
    ) -> InvoiceItem:
        params: Dict[str, Any] = {
            "customer": customer_id,
            "amount": amount,
            "currency": currency,
            "description": description,
        }
        if invoice_id:
            params["invoice"] = invoice_id
        item = await self._call(
            "invoice_item.create", self._client.v1.invoice_items.create_async, params=params, resource_id=customer_id
        )
        return _invoice_item_from_stripe(item)

    async def list_invoice_items(self, *, invoice_id: str) -> List[InvoiceItem]:
        items = await self._list_all("invoice_item.list", self._client.v1.invoice_items, {"invoice": invoice_id})
        return [_invoice_item_from_stripe(item) for item in items]

    # Payments

    async def create_payment_intent(self, *, customer_id: str, amount: int, currency: str) -> PaymentIntent:
        intent = await self._call(
            "payment_intent.create",
            self._client.v1.payment_intents.create_async,
            params={"amount": amount, "currency": currency, "customer": customer_id},
            resource_id=customer_id,
        )
        return PaymentIntent(
            intent_id=_field(intent, "id"),
            amount=_field(intent, "amount", amount),
            currency=_field(intent, "currency", currency),
            status=_field(intent, "status", "requires_payment_method"),
            customer_id=_ref(_field(intent, "customer")) or customer_id,
            client_secret=_field(intent, "client_secret"),
        )

    async def retrieve_charge(self, charge_id: str) -> Charge:
        charge = await self._call(
            "charge.retrieve", self._client.v1.charges.retrieve_async, charge_id, resource_id=charge_id
        )
        return Charge(
            charge_id=_field(charge, "id", charge_id),
            amount=_field(charge, "amount", 0),
            currency=_field(charge, "currency", "usd"),
            status=_field(charge, "status", "pending"),
            paid=bool(_field(charge, "paid", False)),
            customer_id=_ref(_field(charge, "customer")),
            description=_field(charge, "description"),
            failure_message=_field(charge, "failure_message"),
        )

    # Tax rates

    async def create_tax_rate(self, params: Mapping[str, Any]) -> TaxRate:
        tax_rate = await self._call("tax_rate.create", self._client.v1.tax_rates.create_async, params=dict(params))
        return _tax_rate_from_stripe(tax_rate)

    async def list_tax_rates(self) -> List[TaxRate]:
        tax_rates = await self._list_all("tax_rate.list", self._client.v1.tax_rates, {})
        return [_tax_rate_from_stripe(tax_rate) for tax_rate in tax_rates]

    async def update_tax_rate(self, tax_rate_id: str, patch: Mapping[str, Any]) -> TaxRate:
        tax_rate = await self._call(
            "tax_rate.update",
            self._client.v1.tax_rates.update_async,
            tax_rate_id,
            params=dict(patch),
            resource_id=tax_rate_id,
        )
        return _tax_rate_from_stripe(tax_rate)


def _message(exc: Exception) -> str:
    return getattr(exc, "user_message", None) or str(exc) or exc.__class__.__name__


def _as_mapping(value: Any) -> Mapping[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return value
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return {}


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a Stripe object or plain mapping."""

    if obj is None:
        return default
    if isinstance(obj, Mapping):
        value = obj.get(key)
    else:
        value = getattr(obj, key, None)
    return default if value is None else value


def _ref(value: Any) -> Optional[str]:
    """Return the id of an expandable field, expanded or not."""

    if value is None or isinstance(value, str):
        return value
    return _field(value, "id")


def _string_map(value: Any) -> Dict[str, str]:
    return {str(k): str(v) for k, v in _as_mapping(value).items()}


def _timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _customer_from_stripe(customer: Any) -> Customer:
    metadata = _string_map(_field(customer, "metadata"))
    raw_user_id = metadata.get(USER_ID_METADATA_KEY)
    sources = [
        PaymentSource(
            source_id=_field(source, "id"),
            object=_field(source, "object", "card"),
            brand=_field(source, "brand"),
            last4=_field(source, "last4"),
        )
        for source in _field(_field(customer, "sources"), "data", [])
    ]
    return Customer(
        customer_id=_field(customer, "id"),
        user_id=int(raw_user_id) if raw_user_id and raw_user_id.lstrip("-").isdigit() else None,
        email=_field(customer, "email"),
        name=_field(customer, "name"),
        default_source=_ref(_field(customer, "default_source")),
        sources=sources,
        metadata=metadata,
    )


def _payment_method_from_stripe(method: Any) -> PaymentMethod:
    card = _field(method, "card")
    return PaymentMethod(
        payment_method_id=_field(method, "id"),
        type=_field(method, "type", "card"),
        customer_id=_ref(_field(method, "customer")),
        card_brand=_field(card, "brand"),
        card_last4=_field(card, "last4"),
        exp_month=_field(card, "exp_month"),
        exp_year=_field(card, "exp_year"),
    )


def _product_from_stripe(product: Any) -> Product:
    return Product(
        product_id=_field(product, "id"),
        name=_field(product, "name"),
        metadata=_string_map(_field(product, "metadata")),
        active=bool(_field(product, "active", True)),
        deleted=bool(_field(product, "deleted", False)),
    )


def _price_from_stripe(price: Any) -> Price:
    recurring = _field(price, "recurring")
    return Price(
        price_id=_field(price, "id"),
        product_id=_ref(_field(price, "product")),
        unit_amount=_field(price, "unit_amount", 0),
        currency=_field(price, "currency", "usd"),
        recurring=(
            RecurringInterval(
                interval=_field(recurring, "interval"),
                interval_count=_field(recurring, "interval_count", 1),
            )
            if recurring
            else None
        ),
        active=bool(_field(price, "active", True)),
        metadata=_string_map(_field(price, "metadata")),
    )


def _subscription_item_from_stripe(item: Any, *, subscription_id: Optional[str] = None) -> SubscriptionItem:
    return SubscriptionItem(
        item_id=_field(item, "id"),
        subscription_id=_field(item, "subscription", subscription_id),
        price_id=_ref(_field(item, "price")),
        deleted=bool(_field(item, "deleted", False)),
    )


def _subscription_from_stripe(subscription: Any) -> Subscription:
    subscription_id = _field(subscription, "id")
    raw_status = _field(subscription, "status")
    items = [
        _subscription_item_from_stripe(item, subscription_id=subscription_id)
        for item in _field(_field(subscription, "items"), "data", [])
    ]
    return Subscription(
        subscription_id=subscription_id,
        customer_id=_ref(_field(subscription, "customer")),
        status=SubscriptionStatus(raw_status) if raw_status else SubscriptionStatus.UNKNOWN,
        raw_status=raw_status,
        items=items,
        metadata=_string_map(_field(subscription, "metadata")),
        cancel_at_period_end=bool(_field(subscription, "cancel_at_period_end", False)),
        pause_behavior=_field(_field(subscription, "pause_collection"), "behavior"),
        latest_invoice_id=_ref(_field(subscription, "latest_invoice")),
        current_period_end=_timestamp(_field(subscription, "current_period_end")),
    )


def _invoice_item_from_stripe(
    item: Any,
    *,
    customer_id: Optional[str] = None,
    invoice_id: Optional[str] = None,
) -> InvoiceItem:
    return InvoiceItem(
        item_id=_ref(_field(item, "invoice_item")) or _field(item, "id"),
        customer_id=_ref(_field(item, "customer")) or customer_id or "",
        invoice_id=_ref(_field(item, "invoice")) or invoice_id,
        amount=_field(item, "amount", 0),
        currency=_field(item, "currency", "usd"),
        description=_field(item, "description"),
    )


def _invoice_from_stripe(invoice: Any) -> Invoice:
    invoice_id = _field(invoice, "id")
    customer_id = _ref(_field(invoice, "customer"))
    lines = [
        _invoice_item_from_stripe(line, customer_id=customer_id, invoice_id=invoice_id)
        for line in _field(_field(invoice, "lines"), "data", [])
    ]
    return Invoice(
        invoice_id=invoice_id,
        customer_id=customer_id,
        subscription_id=_ref(_field(invoice, "subscription")),
        status=_field(invoice, "status", "draft"),
        auto_advance=bool(_field(invoice, "auto_advance", False)),
        amount_due=_field(invoice, "amount_due", 0),
        currency=_field(invoice, "currency", "usd"),
        lines=lines,
    )


def _tax_rate_from_stripe(tax_rate: Any) -> TaxRate:
    return TaxRate(
        tax_rate_id=_field(tax_rate, "id"),
        display_name=_field(tax_rate, "display_name", ""),
        percentage=float(_field(tax_rate, "percentage", 0)),
        inclusive=bool(_field(tax_rate, "inclusive", False)),
        active=bool(_field(tax_rate, "active", True)),
        jurisdiction=_field(tax_rate, "jurisdiction"),
        description=_field(tax_rate, "description"),
    )


__all__ = ["StripeGateway", "create_stripe_client"]
