"""Stripe gateway request shaping, error translation and normalization."""
from __future__ import annotations

import warnings
from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest
import stripe

from paybridge.app.gateway import (
    CatalogConflict,
    InvalidReference,
    PaymentDeclined,
    ProcessorError,
    RecurringInterval,
    RemoteUnavailable,
    StripeGateway,
    SubscriptionStatus,
)
from paybridge.app.gateway.config import load_gateway_config
from paybridge.app.gateway.stripe_gateway import create_stripe_client


def _gateway() -> tuple[StripeGateway, MagicMock]:
    client = MagicMock()
    return StripeGateway(client, api_version="2022-11-15"), client


def _page(data: List[Dict[str, Any]], has_more: bool = False) -> Dict[str, Any]:
    return {"object": "list", "data": data, "has_more": has_more}


def _subscription(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": "sub_1",
        "customer": "cus_1",
        "status": "active",
        "metadata": {"userId": "42"},
        "cancel_at_period_end": False,
        "pause_collection": None,
        "latest_invoice": {"id": "in_1", "object": "invoice"},
        "current_period_end": 1700000000,
        "items": {"object": "list", "data": [{"id": "si_1", "price": {"id": "price_1", "object": "price"}}]},
    }
    payload.update(overrides)
    return payload


def test_create_stripe_client_requires_key() -> None:
    config = load_gateway_config({"BILLING_PROVIDER": "sandbox"})
    with pytest.raises(ValueError):
        create_stripe_client(config)


def test_stripe_client_services_resolve_without_deprecation() -> None:
    config = load_gateway_config({"BILLING_PROVIDER": "stripe", "STRIPE_SECRET_KEY": "sk_test_123"})
    gateway = StripeGateway.from_config(config)

    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        services = gateway._client.v1
        assert callable(services.subscriptions.resume_async)
        assert callable(services.prices.list_async)
        assert callable(services.ephemeral_keys.create_async)


@pytest.mark.asyncio
async def test_create_subscription_request_and_normalization() -> None:
    gateway, client = _gateway()
    client.v1.subscriptions.create_async = AsyncMock(return_value=_subscription())

    subscription = await gateway.create_subscription(
        customer_id="cus_1", items=[{"price": "price_1"}], metadata={"userId": "42"}
    )

    client.v1.subscriptions.create_async.assert_awaited_once_with(
        params={"customer": "cus_1", "items": [{"price": "price_1"}], "metadata": {"userId": "42"}}
    )
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.user_id == 42
    assert subscription.price_ids == ["price_1"]
    assert subscription.items[0].subscription_id == "sub_1"
    assert subscription.latest_invoice_id == "in_1"
    assert subscription.current_period_end is not None


@pytest.mark.asyncio
async def test_unrecognized_status_is_kept_raw() -> None:
    gateway, client = _gateway()
    client.v1.subscriptions.retrieve_async = AsyncMock(return_value=_subscription(status="on_hold"))

    subscription = await gateway.retrieve_subscription("sub_1")

    assert subscription.status == SubscriptionStatus.UNKNOWN
    assert subscription.raw_status == "on_hold"


@pytest.mark.asyncio
async def test_paused_subscription_reports_behavior() -> None:
    gateway, client = _gateway()
    client.v1.subscriptions.update_async = AsyncMock(
        return_value=_subscription(pause_collection={"behavior": "void", "resumes_at": None})
    )

    subscription = await gateway.update_subscription("sub_1", {"pause_collection": {"behavior": "void"}})

    client.v1.subscriptions.update_async.assert_awaited_once_with(
        "sub_1", params={"pause_collection": {"behavior": "void"}}
    )
    assert subscription.pause_behavior == "void"
    assert subscription.is_paused is True


@pytest.mark.asyncio
async def test_cancel_and_resume_parameters() -> None:
    gateway, client = _gateway()
    client.v1.subscriptions.cancel_async = AsyncMock(return_value=_subscription(status="canceled"))
    client.v1.subscriptions.resume_async = AsyncMock(return_value=_subscription())

    canceled = await gateway.cancel_subscription("sub_1", invoice_now=True)
    await gateway.resume_subscription("sub_1", billing_cycle_anchor="now")

    client.v1.subscriptions.cancel_async.assert_awaited_once_with("sub_1", params={"invoice_now": True})
    client.v1.subscriptions.resume_async.assert_awaited_once_with("sub_1", params={"billing_cycle_anchor": "now"})
    assert canceled.is_terminal is True


@pytest.mark.asyncio
async def test_card_error_becomes_payment_declined() -> None:
    gateway, client = _gateway()
    client.v1.invoices.pay_async = AsyncMock(
        side_effect=stripe.CardError("Your card was declined.", None, "card_declined")
    )

    with pytest.raises(PaymentDeclined) as exc:
        await gateway.pay_invoice("in_1")

    assert exc.value.resource_id == "in_1"
    assert exc.value.decline_code == "card_declined"
    assert isinstance(exc.value.__cause__, stripe.CardError)


@pytest.mark.asyncio
async def test_missing_resource_becomes_invalid_reference() -> None:
    gateway, client = _gateway()
    client.v1.customers.retrieve_async = AsyncMock(
        side_effect=stripe.InvalidRequestError("No such customer: 'cus_x'", "id", code="resource_missing")
    )

    with pytest.raises(InvalidReference) as exc:
        await gateway.retrieve_customer("cus_x", expand=("sources",))

    assert exc.value.resource_id == "cus_x"
    client.v1.customers.retrieve_async.assert_awaited_once_with("cus_x", params={"expand": ["sources"]})


@pytest.mark.asyncio
async def test_connection_and_rate_limit_become_remote_unavailable() -> None:
    gateway, client = _gateway()
    client.v1.prices.update_async = AsyncMock(side_effect=stripe.APIConnectionError("timed out"))
    client.v1.products.update_async = AsyncMock(side_effect=stripe.RateLimitError("slow down"))

    with pytest.raises(RemoteUnavailable):
        await gateway.update_price("price_1", {"active": False})
    with pytest.raises(RemoteUnavailable):
        await gateway.update_product("prod_1", {"active": False})


@pytest.mark.asyncio
async def test_delete_product_with_prices_is_a_conflict() -> None:
    gateway, client = _gateway()
    client.v1.products.delete_async = AsyncMock(
        side_effect=stripe.InvalidRequestError(
            "This product cannot be deleted because it has one or more user-created prices.", None
        )
    )

    with pytest.raises(CatalogConflict) as exc:
        await gateway.delete_product("prod_1")

    assert exc.value.resource_id == "prod_1"


@pytest.mark.asyncio
async def test_delete_product_returns_deleted_marker() -> None:
    gateway, client = _gateway()
    client.v1.products.delete_async = AsyncMock(return_value={"id": "prod_1", "object": "product", "deleted": True})

    product = await gateway.delete_product("prod_1")

    assert product.deleted is True
    assert product.product_id == "prod_1"


@pytest.mark.asyncio
async def test_other_invalid_requests_stay_processor_errors() -> None:
    gateway, client = _gateway()
    client.v1.prices.update_async = AsyncMock(
        side_effect=stripe.InvalidRequestError("Received unknown parameter: unit_amount", "unit_amount")
    )

    with pytest.raises(ProcessorError) as exc:
        await gateway.update_price("price_1", {"unit_amount": 5})

    assert type(exc.value) is ProcessorError


@pytest.mark.asyncio
async def test_generic_stripe_error_becomes_processor_error() -> None:
    gateway, client = _gateway()
    client.v1.invoices.create_async = AsyncMock(side_effect=stripe.APIError("internal"))

    with pytest.raises(ProcessorError):
        await gateway.create_invoice(customer_id="cus_1", subscription_id=None, auto_advance=False)

    client.v1.invoices.create_async.assert_awaited_once_with(params={"customer": "cus_1", "auto_advance": False})


@pytest.mark.asyncio
async def test_list_prices_follows_pagination() -> None:
    gateway, client = _gateway()
    first = {"id": "price_1", "product": "prod_1", "unit_amount": 1000, "currency": "USD", "active": True,
             "recurring": {"interval": "month", "interval_count": 1}}
    second = {"id": "price_2", "product": {"id": "prod_1"}, "unit_amount": 2000, "currency": "usd",
              "active": False, "recurring": {"interval": "year", "interval_count": 1}}
    client.v1.prices.list_async = AsyncMock(side_effect=[_page([first], has_more=True), _page([second])])

    prices = await gateway.list_prices(product_id="prod_1")

    assert [price.price_id for price in prices] == ["price_1", "price_2"]
    assert prices[0].currency == "usd"
    assert prices[1].product_id == "prod_1"
    assert prices[1].recurring == RecurringInterval(interval="year")
    calls = client.v1.prices.list_async.await_args_list
    assert calls[0].kwargs == {"params": {"product": "prod_1", "limit": 100}}
    assert calls[1].kwargs == {"params": {"product": "prod_1", "limit": 100, "starting_after": "price_1"}}


@pytest.mark.asyncio
async def test_create_price_sends_minor_units_and_interval() -> None:
    gateway, client = _gateway()
    client.v1.prices.create_async = AsyncMock(
        return_value={"id": "price_9", "product": "prod_1", "unit_amount": 1999, "currency": "usd",
                      "recurring": {"interval": "month", "interval_count": 1}}
    )

    price = await gateway.create_price(
        product_id="prod_1", unit_amount=1999, currency="usd", recurring=RecurringInterval(interval="month")
    )

    client.v1.prices.create_async.assert_awaited_once_with(
        params={
            "unit_amount": 1999,
            "currency": "usd",
            "recurring": {"interval": "month", "interval_count": 1},
            "product": "prod_1",
        }
    )
    assert price.unit_amount == 1999


@pytest.mark.asyncio
async def test_ephemeral_key_pins_api_version() -> None:
    gateway, client = _gateway()
    client.v1.ephemeral_keys.create_async = AsyncMock(
        return_value={"id": "ephkey_1", "secret": "ek_test_1", "expires": 1700003600}
    )

    key = await gateway.create_ephemeral_key("cus_1")

    client.v1.ephemeral_keys.create_async.assert_awaited_once_with(
        params={"customer": "cus_1"}, options={"stripe_version": "2022-11-15"}
    )
    assert key.secret == "ek_test_1"
    assert key.api_version == "2022-11-15"


@pytest.mark.asyncio
async def test_customer_normalization() -> None:
    gateway, client = _gateway()
    client.v1.customers.create_async = AsyncMock(
        return_value={
            "id": "cus_1",
            "email": "ada@example.com",
            "name": "Ada",
            "metadata": {"userId": "42"},
            "default_source": "card_1",
            "sources": {"data": [{"id": "card_1", "object": "card", "brand": "Visa", "last4": "4242"}]},
        }
    )

    customer = await gateway.create_customer(name="Ada", email="ada@example.com", metadata={"userId": "42"})

    client.v1.customers.create_async.assert_awaited_once_with(
        params={"name": "Ada", "email": "ada@example.com", "metadata": {"userId": "42"}}
    )
    assert customer.user_id == 42
    assert customer.sources[0].last4 == "4242"


@pytest.mark.asyncio
async def test_invoice_normalization() -> None:
    gateway, client = _gateway()
    client.v1.invoices.retrieve_async = AsyncMock(
        return_value={
            "id": "in_1",
            "customer": "cus_1",
            "subscription": "sub_1",
            "status": "paid",
            "auto_advance": False,
            "amount_due": 1250,
            "currency": "usd",
            "lines": {"data": [{"id": "il_1", "invoice_item": "ii_1", "amount": 1250, "currency": "usd",
                                "description": "Overage"}]},
        }
    )

    invoice = await gateway.retrieve_invoice("in_1")

    assert invoice.is_paid is True
    assert invoice.lines[0].item_id == "ii_1"
    assert invoice.lines[0].customer_id == "cus_1"
    assert invoice.lines[0].invoice_id == "in_1"


@pytest.mark.asyncio
async def test_create_invoice_item_targets_invoice() -> None:
    gateway, client = _gateway()
    client.v1.invoice_items.create_async = AsyncMock(
        return_value={"id": "ii_1", "customer": "cus_1", "invoice": "in_1", "amount": 500, "currency": "usd"}
    )

    item = await gateway.create_invoice_item(
        customer_id="cus_1", amount=500, currency="usd", description="Fee", invoice_id="in_1"
    )

    client.v1.invoice_items.create_async.assert_awaited_once_with(
        params={"customer": "cus_1", "amount": 500, "currency": "usd", "description": "Fee", "invoice": "in_1"}
    )
    assert item.invoice_id == "in_1"
