"""Invoice drafting and explicit payment."""
from __future__ import annotations

from decimal import Decimal

import pytest
import pytest_asyncio

from paybridge.app.audit import BillingAuditEventType
from paybridge.app.gateway import InvalidReference, PaymentDeclined, ProcessorError


@pytest_asyncio.fixture
async def customer(billing):
    return await billing.customers.create_customer("Grace", "grace@example.com", 7)


@pytest.mark.asyncio
async def test_create_invoice_is_never_auto_advanced(billing, sandbox, customer) -> None:
    invoice = await billing.invoicing.create_invoice(customer.customer_id)

    assert invoice.status == "draft"
    assert invoice.auto_advance is False
    assert sandbox.operations("invoice.create")[0] == {
        "customer": customer.customer_id,
        "subscription": None,
        "auto_advance": False,
    }


@pytest.mark.asyncio
async def test_create_invoice_for_unknown_subscription(billing, customer) -> None:
    with pytest.raises(InvalidReference):
        await billing.invoicing.create_invoice(customer.customer_id, "sub_missing")


@pytest.mark.asyncio
async def test_create_invoice_item_converts_amount(billing, sandbox, customer) -> None:
    item = await billing.invoicing.create_invoice_item(customer.customer_id, 4.35, "EUR", "Setup fee")

    assert item.amount == 435
    assert item.currency == "eur"
    assert item.invoice_id is None
    assert sandbox.operations("invoice_item.create")[0]["amount"] == 435


@pytest.mark.asyncio
async def test_invoice_item_for_unknown_customer(billing) -> None:
    with pytest.raises(InvalidReference):
        await billing.invoicing.create_invoice_item("cus_missing", 1, description="Fee")


@pytest.mark.asyncio
async def test_pay_invoice_settles_and_audits(billing, sandbox, events, customer) -> None:
    invoice = await billing.invoicing.create_invoice(customer.customer_id)
    await billing.invoicing.create_invoice_item(
        customer.customer_id, 12.5, description="Overage", invoice_id=invoice.invoice_id
    )

    paid = await billing.invoicing.pay_invoice(invoice.invoice_id)

    assert paid.is_paid is True
    assert paid.amount_due == 1250
    assert len(sandbox.charges) == 1
    assert events.events[-1].event_type == BillingAuditEventType.INVOICE_PAID
    assert events.events[-1].metadata["amount_due"] == "1250"
    with pytest.raises(ProcessorError):
        await billing.invoicing.pay_invoice(invoice.invoice_id)


@pytest.mark.asyncio
async def test_pay_invoice_decline_propagates(billing, sandbox, events, customer) -> None:
    sandbox.decline_payments_for(customer.customer_id)
    invoice = await billing.invoicing.create_invoice(customer.customer_id)

    with pytest.raises(PaymentDeclined) as exc:
        await billing.invoicing.pay_invoice(invoice.invoice_id)

    assert exc.value.decline_code == "generic_decline"
    assert exc.value.resource_id == invoice.invoice_id
    assert (await billing.invoicing.get_invoice_details(invoice.invoice_id)).status == "open"
    assert events.events == []


@pytest.mark.asyncio
async def test_list_invoice_items_and_details(billing, customer) -> None:
    invoice = await billing.invoicing.create_invoice(customer.customer_id)
    first = await billing.invoicing.create_invoice_item(
        customer.customer_id, 1, description="One", invoice_id=invoice.invoice_id
    )
    second = await billing.invoicing.create_invoice_item(
        customer.customer_id, 2, description="Two", invoice_id=invoice.invoice_id
    )
    await billing.invoicing.create_invoice_item(customer.customer_id, 3, description="Pending")

    items = await billing.invoicing.list_invoice_items(invoice.invoice_id)
    details = await billing.invoicing.get_invoice_details(invoice.invoice_id)

    assert [item.item_id for item in items] == [first.item_id, second.item_id]
    assert details.amount_due == 300
    assert [line.description for line in details.lines] == ["One", "Two"]


@pytest.mark.asyncio
async def test_get_invoice_details_unknown(billing) -> None:
    with pytest.raises(InvalidReference):
        await billing.invoicing.get_invoice_details("in_missing")


@pytest.mark.asyncio
async def test_bill_now_drafts_attaches_and_pays(billing, sandbox, customer) -> None:
    paid = await billing.invoicing.bill_now(
        customer.customer_id, [(Decimal("9.99"), "Support"), ("0.01", "Rounding")]
    )

    assert paid.is_paid is True
    assert paid.amount_due == 1000
    assert [call["invoice"] for call in sandbox.operations("invoice_item.create")] == [paid.invoice_id] * 2
    assert [name for name, _ in sandbox.calls] == [
        "customer.create",
        "invoice.create",
        "invoice_item.create",
        "invoice_item.create",
        "invoice.pay",
    ]


@pytest.mark.asyncio
async def test_bill_now_requires_lines(billing, sandbox, customer) -> None:
    with pytest.raises(ValueError):
        await billing.invoicing.bill_now(customer.customer_id, [])
    assert sandbox.operations("invoice.create") == []


@pytest.mark.asyncio
async def test_bill_now_leaves_draft_on_decline(billing, sandbox, customer) -> None:
    sandbox.decline_payments_for(customer.customer_id)

    with pytest.raises(PaymentDeclined):
        await billing.invoicing.bill_now(customer.customer_id, [(5, "Late fee")])

    (invoice,) = sandbox.invoices.values()
    assert invoice.is_paid is False
    assert invoice.amount_due == 500
