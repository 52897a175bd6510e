"""Result models for catalog batch operations."""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field

from ..gateway.errors import PartialBatchFailure


class PriceRetirementFailure(BaseModel):
    """A price whose deactivation failed, with the cause."""

    price_id: str
    error: str
    error_type: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PriceRetirementResult(BaseModel):
    """Per-price outcome of retiring every price of a product."""

    product_id: str
    succeeded: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    failed: List[PriceRetirementFailure] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def ok(self) -> bool:
        """Return ``True`` only when no deactivation failed."""
        return not self.failed

    @property
    def failed_ids(self) -> List[str]:
        return [failure.price_id for failure in self.failed]

    def raise_for_failures(self) -> "PriceRetirementResult":
        if self.failed:
            raise PartialBatchFailure(self)
        return self
