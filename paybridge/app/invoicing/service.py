"""Invoice creation and collection outside the normal renewal cycle."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from ..audit import BillingAuditEvent, BillingAuditEventType, BillingEventLogger, NullBillingEventLogger
from ..gateway.models import Invoice, InvoiceItem
from ..gateway.money import Amount, from_minor_units, to_minor_units
from ..gateway.protocol import ProcessorGateway

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InvoicingCoordinator:
    """Creates draft invoices and items, then drives payment explicitly.

    Invoices are never auto-advanced: they stay drafts until :meth:`pay_invoice`.
    Payment failures such as declines propagate and are not retried.
    """

    gateway: ProcessorGateway
    event_logger: BillingEventLogger = field(default_factory=NullBillingEventLogger)
    default_currency: str = "usd"

    async def create_invoice(self, customer_id: str, subscription_id: Optional[str] = None) -> Invoice:
        invoice = await self.gateway.create_invoice(
            customer_id=customer_id,
            subscription_id=subscription_id,
            auto_advance=False,
        )
        logger.info(
            "Created draft invoice %s customer=%s subscription=%s",
            invoice.invoice_id,
            customer_id,
            subscription_id,
        )
        return invoice

    async def create_invoice_item(
        self,
        customer_id: str,
        amount: Amount,
        currency: Optional[str] = None,
        description: str = "",
        invoice_id: Optional[str] = None,
    ) -> InvoiceItem:
        item = await self.gateway.create_invoice_item(
            customer_id=customer_id,
            amount=to_minor_units(amount),
            currency=(currency or self.default_currency).lower(),
            description=description,
            invoice_id=invoice_id,
        )
        logger.info(
            "Created invoice item %s customer=%s amount=%s %s invoice=%s",
            item.item_id,
            customer_id,
            item.amount,
            item.currency,
            invoice_id,
        )
        return item

    async def pay_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.gateway.pay_invoice(invoice_id)
        logger.info("Paid invoice %s status=%s amount=%s", invoice_id, invoice.status, invoice.amount_due)
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.INVOICE_PAID,
                subscription_id=invoice.subscription_id,
                customer_id=invoice.customer_id,
                resource_id=invoice_id,
                metadata={"amount_due": str(invoice.amount_due), "currency": invoice.currency},
            )
        )
        return invoice

    async def list_invoice_items(self, invoice_id: str) -> List[InvoiceItem]:
        return await self.gateway.list_invoice_items(invoice_id=invoice_id)

    async def get_invoice_details(self, invoice_id: str) -> Invoice:
        return await self.gateway.retrieve_invoice(invoice_id)

    async def bill_now(
        self,
        customer_id: str,
        lines: Sequence[Tuple[Amount, str]],
        subscription_id: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> Invoice:
        """Invoice ``lines`` immediately: draft invoice, attach items, pay.

        Nothing is rolled back on failure; the draft invoice id is logged so
        the caller can reconcile it.
        """

        if not lines:
            raise ValueError("bill_now requires at least one line")
        invoice = await self.create_invoice(customer_id, subscription_id)
        try:
            for amount, description in lines:
                await self.create_invoice_item(
                    customer_id,
                    amount,
                    currency=currency,
                    description=description,
                    invoice_id=invoice.invoice_id,
                )
            paid = await self.pay_invoice(invoice.invoice_id)
        except Exception:
            logger.error("Ad-hoc billing left invoice %s unpaid for customer %s", invoice.invoice_id, customer_id)
            raise
        logger.info(
            "Billed customer %s %s %s on invoice %s",
            customer_id,
            from_minor_units(paid.amount_due),
            paid.currency,
            paid.invoice_id,
        )
        return paid


__all__ = ["InvoicingCoordinator"]
