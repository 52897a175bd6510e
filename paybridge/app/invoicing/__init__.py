"""Invoice creation and payment."""

from .service import InvoicingCoordinator

__all__ = ["InvoicingCoordinator"]
