"""Request models for subscription mutations."""
from __future__ import annotations

from typing import Any, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field


class PriceSwap(BaseModel):
    """Move one subscription item to a different price."""

    subscription_item_id: str = Field(min_length=1, alias="subscriptionItemId")
    price_id: str = Field(min_length=1, alias="productPriceId")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def coerce(cls, value: Union["PriceSwap", Mapping[str, Any]]) -> "PriceSwap":
        if isinstance(value, PriceSwap):
            return value
        return cls.model_validate(dict(value))

    def as_item(self) -> dict:
        return {"id": self.subscription_item_id, "price": self.price_id}
