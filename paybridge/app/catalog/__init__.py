"""Product and price catalog management."""

from .models import PriceRetirementFailure, PriceRetirementResult
from .service import CatalogManager

__all__ = ["CatalogManager", "PriceRetirementFailure", "PriceRetirementResult"]
