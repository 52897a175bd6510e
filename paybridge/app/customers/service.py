"""Customer, payment method and tax rate forwarding."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from ..gateway.models import (
    UNSET,
    USER_ID_METADATA_KEY,
    Charge,
    Customer,
    EphemeralKey,
    PaymentIntent,
    PaymentMethod,
    TaxRate,
    build_patch,
)
from ..gateway.money import Amount, to_minor_units
from ..gateway.protocol import ProcessorGateway

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CustomerAccessor:
    """Thin access to customer records and the identifiers other components consume."""

    gateway: ProcessorGateway
    default_currency: str = "usd"

    async def create_customer(
        self,
        name: str,
        email: str,
        user_id: int,
        source: Optional[str] = None,
    ) -> Customer:
        customer = await self.gateway.create_customer(
            name=name,
            email=email,
            metadata={USER_ID_METADATA_KEY: str(user_id)},
            source=source or None,
        )
        logger.info("Created customer %s for user %s", customer.customer_id, user_id)
        return customer

    async def get_customer_details(self, customer_id: str) -> Customer:
        return await self.gateway.retrieve_customer(customer_id, expand=("sources",))

    async def get_payment_methods(self, customer_id: str) -> List[PaymentMethod]:
        return await self.gateway.list_payment_methods(customer_id, type="card")

    async def create_ephemeral_key(self, customer_id: str) -> EphemeralKey:
        return await self.gateway.create_ephemeral_key(customer_id)

    async def get_charge_details(self, charge_id: str) -> Charge:
        return await self.gateway.retrieve_charge(charge_id)

    async def create_payment_intent(
        self,
        customer_id: str,
        amount: Amount,
        currency: Optional[str] = None,
    ) -> PaymentIntent:
        intent = await self.gateway.create_payment_intent(
            customer_id=customer_id,
            amount=to_minor_units(amount),
            currency=(currency or self.default_currency).lower(),
        )
        logger.info(
            "Created payment intent %s customer=%s amount=%s %s",
            intent.intent_id,
            customer_id,
            intent.amount,
            intent.currency,
        )
        return intent

    async def create_tax_rate(
        self,
        display_name: str,
        percentage: float,
        inclusive: bool = False,
        **extra: Any,
    ) -> TaxRate:
        return await self.gateway.create_tax_rate(
            {"display_name": display_name, "percentage": percentage, "inclusive": inclusive, **extra}
        )

    async def list_tax_rates(self) -> List[TaxRate]:
        return await self.gateway.list_tax_rates()

    async def update_tax_rate(
        self,
        tax_rate_id: str,
        *,
        active: Any = UNSET,
        display_name: Any = UNSET,
        description: Any = UNSET,
        jurisdiction: Any = UNSET,
    ) -> TaxRate:
        patch = build_patch(
            active=active,
            display_name=display_name,
            description=description,
            jurisdiction=jurisdiction,
        )
        if not patch:
            raise ValueError("update_tax_rate requires at least one field")
        return await self.gateway.update_tax_rate(tax_rate_id, patch)


__all__ = ["CustomerAccessor"]
