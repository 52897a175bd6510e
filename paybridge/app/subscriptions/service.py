"""Subscription lifecycle management against the payment processor."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..audit import BillingAuditEvent, BillingAuditEventType, BillingEventLogger, NullBillingEventLogger
from ..gateway.models import (
    UNSET,
    USER_ID_METADATA_KEY,
    USER_SUBSCRIPTION_ID_METADATA_KEY,
    Subscription,
    SubscriptionItem,
)
from ..gateway.protocol import ProcessorGateway
from .models import PriceSwap

logger = logging.getLogger(__name__)

# Fixed lifecycle parameters. Cancellation always bills outstanding usage
# immediately, pausing voids invoices, and resuming restarts the cycle.
INVOICE_NOW_ON_CANCEL = True
PAUSE_BEHAVIOR = "void"
RESUME_BILLING_CYCLE_ANCHOR = "now"


@dataclass(slots=True)
class SubscriptionLifecycleManager:
    """Drives create, update, pause, resume and cancel transitions of subscriptions.

    The processor owns the subscription state machine; this manager issues the
    transitions and returns what the processor reports. Concurrent calls for
    the same subscription are not serialized.
    """

    gateway: ProcessorGateway
    event_logger: BillingEventLogger = field(default_factory=NullBillingEventLogger)

    async def create(self, customer_id: str, price_id: str, user_id: int) -> Subscription:
        subscription = await self.gateway.create_subscription(
            customer_id=customer_id,
            items=[{"price": price_id}],
            metadata={USER_ID_METADATA_KEY: str(user_id)},
        )
        logger.info(
            "Created subscription %s customer=%s price=%s user=%s status=%s",
            subscription.subscription_id,
            customer_id,
            price_id,
            user_id,
            subscription.status.value,
        )
        self._audit(BillingAuditEventType.SUBSCRIPTION_CREATED, subscription, {"price_id": price_id})
        return subscription

    async def update(
        self,
        subscription_id: str,
        *,
        user_subscription_id: Any = UNSET,
        price_swap: Any = UNSET,
        cancel_at_period_end: Any = UNSET,
    ) -> Subscription:
        """Apply any combination of the three mutations in one remote request.

        A field is sent when it is supplied, whatever its value:
        ``user_subscription_id=0`` and ``cancel_at_period_end=False`` are
        both sent, and ``user_subscription_id=None`` clears the correlation
        id. ``price_swap=None`` is treated as not supplied.
        """

        patch: Dict[str, Any] = {}
        if user_subscription_id is not UNSET:
            value = "" if user_subscription_id is None else str(int(user_subscription_id))
            patch["metadata"] = {USER_SUBSCRIPTION_ID_METADATA_KEY: value}
        if price_swap is not UNSET and price_swap is not None:
            patch["items"] = [PriceSwap.coerce(price_swap).as_item()]
        if cancel_at_period_end is not UNSET:
            if not isinstance(cancel_at_period_end, bool):
                raise TypeError("cancel_at_period_end must be a bool")
            patch["cancel_at_period_end"] = cancel_at_period_end
        if not patch:
            raise ValueError("update requires at least one of user_subscription_id, price_swap, cancel_at_period_end")

        subscription = await self.gateway.update_subscription(subscription_id, patch)
        logger.info("Updated subscription %s fields=%s", subscription_id, sorted(patch))
        self._audit(
            BillingAuditEventType.SUBSCRIPTION_UPDATED,
            subscription,
            {"fields": ",".join(sorted(patch))},
        )
        return subscription

    async def change_price(self, subscription_id: str, price_id: str) -> Subscription:
        """Swap the single item of a one-price subscription to ``price_id``."""

        subscription = await self.gateway.retrieve_subscription(subscription_id)
        live_items = [item for item in subscription.items if not item.deleted]
        if len(live_items) != 1:
            raise ValueError(
                f"subscription {subscription_id} has {len(live_items)} items; swap a specific item with update()"
            )
        return await self.update(
            subscription_id,
            price_swap=PriceSwap(subscription_item_id=live_items[0].item_id, price_id=price_id),
        )

    async def cancel(self, subscription_id: str) -> Subscription:
        """Cancel immediately and invoice outstanding usage right away."""

        subscription = await self.gateway.cancel_subscription(subscription_id, invoice_now=INVOICE_NOW_ON_CANCEL)
        logger.info(
            "Canceled subscription %s status=%s invoice=%s",
            subscription_id,
            subscription.status.value,
            subscription.latest_invoice_id,
        )
        self._audit(
            BillingAuditEventType.SUBSCRIPTION_CANCELED,
            subscription,
            {"invoice_id": subscription.latest_invoice_id or ""},
        )
        return subscription

    async def pause(self, subscription_id: str) -> Subscription:
        """Pause collection. Invoices are voided while paused, not deferred."""

        subscription = await self.gateway.update_subscription(
            subscription_id, {"pause_collection": {"behavior": PAUSE_BEHAVIOR}}
        )
        logger.info("Paused subscription %s behavior=%s", subscription_id, PAUSE_BEHAVIOR)
        self._audit(BillingAuditEventType.SUBSCRIPTION_PAUSED, subscription)
        return subscription

    async def resume(self, subscription_id: str) -> Subscription:
        """Resume billing with the cycle anchored at the moment of resumption."""

        subscription = await self.gateway.resume_subscription(
            subscription_id, billing_cycle_anchor=RESUME_BILLING_CYCLE_ANCHOR
        )
        logger.info("Resumed subscription %s status=%s", subscription_id, subscription.status.value)
        self._audit(BillingAuditEventType.SUBSCRIPTION_RESUMED, subscription)
        return subscription

    async def retrieve(self, subscription_id: str) -> Subscription:
        return await self.gateway.retrieve_subscription(subscription_id)

    async def list(self, customer_id: str) -> List[Subscription]:
        return await self.gateway.list_subscriptions(customer_id=customer_id)

    async def create_item(self, subscription_id: str, price_id: str) -> SubscriptionItem:
        item = await self.gateway.create_subscription_item(subscription_id=subscription_id, price_id=price_id)
        logger.info("Added item %s price=%s to subscription %s", item.item_id, price_id, subscription_id)
        return item

    async def delete_item(self, subscription_item_id: str) -> SubscriptionItem:
        item = await self.gateway.delete_subscription_item(subscription_item_id)
        logger.info("Deleted subscription item %s", subscription_item_id)
        return item

    def _audit(
        self,
        event_type: BillingAuditEventType,
        subscription: Subscription,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        self.event_logger.log(
            BillingAuditEvent(
                event_type=event_type,
                subscription_id=subscription.subscription_id,
                customer_id=subscription.customer_id,
                metadata={"status": subscription.status.value, **(metadata or {})},
            )
        )


__all__ = [
    "INVOICE_NOW_ON_CANCEL",
    "PAUSE_BEHAVIOR",
    "RESUME_BILLING_CYCLE_ANCHOR",
    "SubscriptionLifecycleManager",
]
