"""Typed failures raised while generating an invoice.

Every fatal error aborts the whole generation; no partial invoice is built.
Messages are meant to be shown to the operator verbatim, so they carry the
offending identifier or value and nothing else.
"""

from __future__ import annotations

from typing import Optional, Sequence


class InvoiceSyncError(Exception):
    """Base class for invoice generation failures."""


class MissingIdentifierError(InvoiceSyncError):
    """A line item carries neither a product id nor a variant id."""

    def __init__(self, title: str, order_number: Optional[str] = None) -> None:
        self.title = title
        self.order_number = order_number
        where = f" in order {order_number}" if order_number else ""
        super().__init__(f"Missing productId or variantId for item: {title}{where}")


class InvalidDiscountError(InvoiceSyncError):
    """A computed discount percentage fell outside [0, 100]."""

    def __init__(self, value: float, context: str = "unknown") -> None:
        self.value = value
        self.context = context
        super().__init__(
            f"Invalid discount in {context}: {value}%. Discounts must be between 0% and 100%."
        )


class UnresolvedProductError(InvoiceSyncError):
    """No lookup strategy mapped a line item to an invoicing product."""

    def __init__(self, product_id: str, tried_keys: Sequence[str] = ()) -> None:
        self.product_id = product_id
        self.tried_keys = tuple(tried_keys)
        tried = ", ".join(self.tried_keys) or "none"
        super().__init__(f"No invoicing product found for {product_id} (tried: {tried})")


class InvalidStageTransitionError(InvoiceSyncError):
    """The generation pipeline was asked to move backwards or skip a stage."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move invoice generation from {current} to {requested}")


class ReconciliationDivergenceWarning(UserWarning):
    """Computed total drifted from the platform total before correction."""

    def __init__(self, order_number: Optional[str], calculated: float, expected: float) -> None:
        self.order_number = order_number
        self.calculated = calculated
        self.expected = expected
        super().__init__(
            f"Order {order_number or 'N/A'}: calculated total {calculated:.4f} differs from "
            f"expected total {expected:.4f} by {calculated - expected:+.4f}"
        )


class EmptyOrderError(InvoiceSyncError):
    """The order has no line items to invoice."""

    def __init__(self, order_number: Optional[str]) -> None:
        self.order_number = order_number
        super().__init__(f"No valid line items provided in order {order_number or 'N/A'}")
