"""Payment processor gateway: contract, domain models, errors and implementations."""

from .config import GatewayConfig, load_gateway_config
from .errors import (
    CatalogConflict,
    InvalidReference,
    PartialBatchFailure,
    PaymentDeclined,
    ProcessorError,
    RemoteUnavailable,
)
from .models import (
    UNSET,
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
    build_patch,
)
from .money import from_minor_units, to_minor_units
from .protocol import ProcessorGateway
from .sandbox import SandboxGateway
from .stripe_gateway import StripeGateway


def create_gateway(config: GatewayConfig) -> ProcessorGateway:
    provider = (config.provider_name or "sandbox").strip().lower()
    if provider == "stripe":
        return StripeGateway.from_config(config)
    if provider == "sandbox":
        return SandboxGateway(api_version=config.api_version)
    raise ValueError(f"Unsupported billing provider {config.provider_name!r}")


__all__ = [
    "UNSET",
    "CatalogConflict",
    "Charge",
    "Customer",
    "EphemeralKey",
    "GatewayConfig",
    "InvalidReference",
    "Invoice",
    "InvoiceItem",
    "PartialBatchFailure",
    "PaymentDeclined",
    "PaymentIntent",
    "PaymentMethod",
    "PaymentSource",
    "Price",
    "ProcessorError",
    "ProcessorGateway",
    "Product",
    "RecurringInterval",
    "RemoteUnavailable",
    "SandboxGateway",
    "StripeGateway",
    "Subscription",
    "SubscriptionItem",
    "SubscriptionStatus",
    "TaxRate",
    "build_patch",
    "create_gateway",
    "from_minor_units",
    "load_gateway_config",
    "to_minor_units",
]
