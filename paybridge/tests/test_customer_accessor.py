"""Customer, payment and tax rate forwarding."""
from __future__ import annotations

import pytest

from paybridge.app.gateway import InvalidReference


@pytest.mark.asyncio
async def test_create_customer_correlates_user(billing, sandbox) -> None:
    customer = await billing.customers.create_customer("Ada", "ada@example.com", 42, source="tok_visa")

    assert customer.user_id == 42
    assert customer.metadata == {"userId": "42"}
    assert customer.default_source == "tok_visa"
    assert sandbox.operations("customer.create")[0] == {
        "name": "Ada",
        "email": "ada@example.com",
        "metadata": {"userId": "42"},
        "source": "tok_visa",
    }


@pytest.mark.asyncio
async def test_create_customer_without_source(billing, sandbox) -> None:
    customer = await billing.customers.create_customer("Ada", "ada@example.com", 42, source="")

    assert customer.sources == []
    assert sandbox.operations("customer.create")[0]["source"] is None


@pytest.mark.asyncio
async def test_customer_details_expand_sources(billing, sandbox) -> None:
    customer = await billing.customers.create_customer("Ada", "ada@example.com", 42, source="tok_visa")

    details = await billing.customers.get_customer_details(customer.customer_id)

    assert sandbox.operations("customer.retrieve")[0]["expand"] == ["sources"]
    assert [source.source_id for source in details.sources] == ["tok_visa"]


@pytest.mark.asyncio
async def test_unknown_customer_is_invalid_reference(billing) -> None:
    with pytest.raises(InvalidReference) as exc:
        await billing.customers.get_customer_details("cus_missing")
    assert exc.value.payload["error"] == "invalid_reference"


@pytest.mark.asyncio
async def test_payment_methods_are_cards_only(billing, sandbox) -> None:
    customer = await billing.customers.create_customer("Ada", "ada@example.com", 42)
    card = sandbox.attach_payment_method(customer.customer_id, brand="mastercard", last4="4444")
    sandbox.attach_payment_method(customer.customer_id, type="sepa_debit")

    methods = await billing.customers.get_payment_methods(customer.customer_id)

    assert methods == [card]
    assert sandbox.operations("payment_method.list")[0]["type"] == "card"


@pytest.mark.asyncio
async def test_ephemeral_key_uses_pinned_api_version(billing, sandbox) -> None:
    customer = await billing.customers.create_customer("Ada", "ada@example.com", 42)

    key = await billing.customers.create_ephemeral_key(customer.customer_id)

    assert key.customer_id == customer.customer_id
    assert key.api_version == "2022-11-15"
    assert key.secret
    assert sandbox.operations("ephemeral_key.create")[0]["stripe_version"] == "2022-11-15"


@pytest.mark.asyncio
async def test_payment_intent_converts_amount(billing, sandbox) -> None:
    customer = await billing.customers.create_customer("Ada", "ada@example.com", 42)

    intent = await billing.customers.create_payment_intent(customer.customer_id, "25.50", "GBP")

    assert intent.amount == 2550
    assert intent.currency == "gbp"
    assert intent.status == "requires_payment_method"
    assert intent.client_secret.startswith(intent.intent_id)


@pytest.mark.asyncio
async def test_charge_details(billing, sandbox) -> None:
    customer = await billing.customers.create_customer("Ada", "ada@example.com", 42)
    await billing.invoicing.bill_now(customer.customer_id, [(3, "Fee")])
    (charge_id,) = sandbox.charges

    charge = await billing.customers.get_charge_details(charge_id)

    assert charge.paid is True
    assert charge.amount == 300
    with pytest.raises(InvalidReference):
        await billing.customers.get_charge_details("ch_missing")


@pytest.mark.asyncio
async def test_tax_rates(billing, sandbox) -> None:
    rate = await billing.customers.create_tax_rate("VAT", 20.0, inclusive=True, jurisdiction="DE")

    assert rate.inclusive is True
    assert rate.jurisdiction == "DE"
    assert await billing.customers.list_tax_rates() == [rate]

    updated = await billing.customers.update_tax_rate(rate.tax_rate_id, active=False)

    assert updated.active is False
    assert updated.display_name == "VAT"
    assert sandbox.operations("tax_rate.update")[0] == {"tax_rate_id": rate.tax_rate_id, "active": False}
    with pytest.raises(ValueError):
        await billing.customers.update_tax_rate(rate.tax_rate_id)
