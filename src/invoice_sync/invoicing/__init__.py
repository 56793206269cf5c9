"""Invoice computation: discount allocation, invoice lines and reconciliation."""

from .discounts import DiscountAllocation, DiscountAllocator, DiscountMode, TaxRatePolicy
from .engine import InvoiceDraft, InvoiceEngine, InvoiceStage, submit_invoice
from .errors import (
    EmptyOrderError,
    InvalidDiscountError,
    InvalidStageTransitionError,
    InvoiceSyncError,
    MissingIdentifierError,
    ReconciliationDivergenceWarning,
    UnresolvedProductError,
)
from .lines import InvoiceLineBuilder, LineTotals
from .lookup import ProductResolver
from .models import InvoiceLine, Order, ShippingProduct, order_from_dict
from .money import clamp_discount, get_monetary_value
from .reconciliation import ReconciliationCorrector
from .repository import OrderRepository
from .service import InvoiceService

__all__ = [
    "DiscountAllocation",
    "DiscountAllocator",
    "DiscountMode",
    "EmptyOrderError",
    "InvalidDiscountError",
    "InvalidStageTransitionError",
    "InvoiceDraft",
    "InvoiceEngine",
    "InvoiceLine",
    "InvoiceLineBuilder",
    "InvoiceService",
    "InvoiceStage",
    "InvoiceSyncError",
    "LineTotals",
    "MissingIdentifierError",
    "Order",
    "OrderRepository",
    "ProductResolver",
    "ReconciliationCorrector",
    "ReconciliationDivergenceWarning",
    "ShippingProduct",
    "TaxRatePolicy",
    "UnresolvedProductError",
    "clamp_discount",
    "get_monetary_value",
    "order_from_dict",
    "submit_invoice",
]
