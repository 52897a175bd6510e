"""Customer and payment method access."""

from .service import CustomerAccessor

__all__ = ["CustomerAccessor"]
