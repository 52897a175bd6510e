"""Errors raised across the processor gateway boundary."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:  # pragma: no cover
    from ..catalog.models import PriceRetirementResult


@dataclass(eq=False)
class ProcessorError(Exception):
    """A remote processor call failed.

    Gateways translate SDK exceptions into this hierarchy once; the billing
    components propagate them unchanged.
    """

    message: str
    resource_id: Optional[str] = None
    code: str = "processor_error"

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def payload(self) -> Dict[str, Any]:
        """Serialized representation for calling layers."""

        detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.resource_id:
            detail["resource_id"] = self.resource_id
        return detail


@dataclass(eq=False)
class RemoteUnavailable(ProcessorError):
    """Network failure, timeout or rate limiting while talking to the processor."""

    code: str = "remote_unavailable"


@dataclass(eq=False)
class InvalidReference(ProcessorError):
    """An identifier does not resolve on the processor."""

    code: str = "invalid_reference"


@dataclass(eq=False)
class CatalogConflict(ProcessorError):
    """A catalog deletion is blocked by objects still referencing it."""

    code: str = "catalog_conflict"


@dataclass(eq=False)
class PaymentDeclined(ProcessorError):
    """The processor declined a payment."""

    code: str = "payment_declined"
    decline_code: Optional[str] = None


class PartialBatchFailure(Exception):
    """Some operations of a batch failed while others already took effect."""

    def __init__(self, result: "PriceRetirementResult") -> None:
        self.result = result
        failed = ", ".join(failure.price_id for failure in result.failed)
        super().__init__(
            f"Retired {len(result.succeeded)} price(s) of product {result.product_id}; failed: {failed}"
        )


__all__ = [
    "CatalogConflict",
    "InvalidReference",
    "PartialBatchFailure",
    "PaymentDeclined",
    "ProcessorError",
    "RemoteUnavailable",
]
