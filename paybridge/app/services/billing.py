"""Application wiring for the billing service."""
from __future__ import annotations

import logging
from typing import Optional

from dotenv import load_dotenv

from ..audit import BillingAuditEvent, BillingEventLogger
from ..billing import BillingService
from ..gateway import GatewayConfig, ProcessorGateway, create_gateway, load_gateway_config


logger = logging.getLogger("billing")


class LoggingBillingEventLogger(BillingEventLogger):
    """Simple event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        logger.info(
            "Billing event %s subscription=%s customer=%s resource=%s metadata=%s",
            event.event_type.value,
            event.subscription_id,
            event.customer_id,
            event.resource_id,
            event.metadata,
        )


def build_billing_service(
    config: Optional[GatewayConfig] = None,
    *,
    gateway: Optional[ProcessorGateway] = None,
    event_logger: Optional[BillingEventLogger] = None,
) -> BillingService:
    """Build a :class:`BillingService` from configuration.

    Reads ``.env`` and the environment when no ``config`` is given. Each call
    builds a fresh gateway unless one is passed in.
    """

    if config is None:
        load_dotenv()
        config = load_gateway_config()
    if gateway is None:
        gateway = create_gateway(config)
    logger.debug("Building billing service with %r", config)
    return BillingService.from_gateway(
        gateway,
        event_logger=event_logger or LoggingBillingEventLogger(),
        retire_concurrency=config.retire_concurrency,
        default_currency=config.default_currency,
    )


__all__ = ["LoggingBillingEventLogger", "build_billing_service"]
