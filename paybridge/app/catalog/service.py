"""Product and price catalog management."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..audit import BillingAuditEvent, BillingAuditEventType, BillingEventLogger, NullBillingEventLogger
from ..gateway.models import UNSET, Price, Product, RecurringInterval, build_patch
from ..gateway.money import Amount, to_minor_units
from ..gateway.protocol import ProcessorGateway
from .models import PriceRetirementFailure, PriceRetirementResult

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CatalogManager:
    """Creates, updates and retires products and prices on the processor."""

    gateway: ProcessorGateway
    event_logger: BillingEventLogger = field(default_factory=NullBillingEventLogger)
    retire_concurrency: int = 8
    default_currency: str = "usd"

    async def create_product(self, name: str, metadata: Optional[Dict[str, str]] = None) -> Product:
        if not name or not name.strip():
            raise ValueError("product name must not be empty")
        product = await self.gateway.create_product(name=name, metadata=metadata)
        logger.info("Created product %s name=%s", product.product_id, product.name)
        return product

    async def update_product(
        self,
        product_id: str,
        *,
        name: Any = UNSET,
        metadata: Any = UNSET,
        active: Any = UNSET,
    ) -> Product:
        """Send only the supplied fields; everything else stays as it is remotely."""

        if name is not UNSET and (not name or not str(name).strip()):
            raise ValueError("product name must not be empty")
        patch = build_patch(name=name, metadata=metadata, active=active)
        if not patch:
            raise ValueError("update_product requires at least one field")
        product = await self.gateway.update_product(product_id, patch)
        logger.info("Updated product %s fields=%s", product_id, sorted(patch))
        return product

    async def update_product_status(self, product_id: str, active: bool) -> Product:
        product = await self.gateway.update_product(product_id, {"active": active})
        logger.info("Set product %s active=%s", product_id, active)
        return product

    async def delete_product(self, product_id: str) -> Product:
        # CatalogConflict from the gateway when prices still reference the product.
        product = await self.gateway.delete_product(product_id)
        logger.info("Deleted product %s", product_id)
        self.event_logger.log(
            BillingAuditEvent(event_type=BillingAuditEventType.PRODUCT_DELETED, resource_id=product_id)
        )
        return product

    async def list_products(self) -> List[Product]:
        return await self.gateway.list_products()

    async def create_price(
        self,
        product_id: str,
        amount: Amount,
        currency: Optional[str] = None,
        recurring: Union[RecurringInterval, Mapping[str, Any], None] = None,
    ) -> Price:
        if recurring is None:
            raise ValueError("recurring interval is required for subscription prices")
        interval = RecurringInterval.coerce(dict(recurring) if isinstance(recurring, Mapping) else recurring)
        unit_amount = to_minor_units(amount)
        if unit_amount < 0:
            raise ValueError("price amount must not be negative")
        price = await self.gateway.create_price(
            product_id=product_id,
            unit_amount=unit_amount,
            currency=(currency or self.default_currency).lower(),
            recurring=interval,
        )
        logger.info(
            "Created price %s product=%s amount=%s %s every %s %s",
            price.price_id,
            product_id,
            price.unit_amount,
            price.currency,
            interval.interval_count,
            interval.interval,
        )
        return price

    async def update_price(self, price_id: str, *, active: Any = UNSET, metadata: Any = UNSET) -> Price:
        patch = build_patch(active=active, metadata=metadata)
        if not patch:
            raise ValueError("update_price requires active or metadata")
        price = await self.gateway.update_price(price_id, patch)
        logger.info("Updated price %s fields=%s", price_id, sorted(patch))
        return price

    async def list_prices(self, product_id: Optional[str] = None) -> List[Price]:
        return await self.gateway.list_prices(product_id=product_id)

    async def retire_all_prices(self, product_id: str) -> PriceRetirementResult:
        """Deactivate every active price of ``product_id`` concurrently.

        The price list is a point-in-time snapshot. There is no rollback: a
        failed deactivation is reported in ``failed`` while the others keep
        their effect. Call :meth:`PriceRetirementResult.raise_for_failures`
        to turn a partial outcome into an exception.
        """

        prices = await self.gateway.list_prices(product_id=product_id)
        active = [price for price in prices if price.active]
        skipped = [price.price_id for price in prices if not price.active]
        semaphore = asyncio.Semaphore(max(1, self.retire_concurrency))

        async def _deactivate(price: Price) -> Tuple[str, Optional[Exception]]:
            async with semaphore:
                try:
                    await self.gateway.update_price(price.price_id, {"active": False})
                except Exception as exc:
                    logger.warning("Failed to deactivate price %s of product %s: %s", price.price_id, product_id, exc)
                    return price.price_id, exc
                return price.price_id, None

        outcomes = await asyncio.gather(*(_deactivate(price) for price in active))
        result = PriceRetirementResult(
            product_id=product_id,
            succeeded=[price_id for price_id, error in outcomes if error is None],
            skipped=skipped,
            failed=[
                PriceRetirementFailure(price_id=price_id, error=str(error), error_type=type(error).__name__)
                for price_id, error in outcomes
                if error is not None
            ],
        )
        logger.info(
            "Retired prices of product %s succeeded=%s skipped=%s failed=%s",
            product_id,
            len(result.succeeded),
            len(result.skipped),
            len(result.failed),
        )
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.PRICES_RETIRED,
                resource_id=product_id,
                metadata={
                    "succeeded": ",".join(result.succeeded),
                    "failed": ",".join(result.failed_ids),
                },
            )
        )
        return result


__all__ = ["CatalogManager"]
