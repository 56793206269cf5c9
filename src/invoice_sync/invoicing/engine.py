"""Invoice generation pipeline.

One generation runs Collecting -> Classified -> LinesBuilt -> Reconciled and,
once handed to a submitter, Submitted. Stages only move forward; any error
raised along the way aborts the generation before an invoice exists.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from ..utils.logging import get_logger
from .discounts import DiscountAllocation, DiscountAllocator, DiscountMode, TaxRatePolicy
from .errors import EmptyOrderError, InvalidStageTransitionError
from .lines import BuiltInvoiceLines, InvoiceLineBuilder
from .models import InvoiceLine, Order, ShippingProduct
from .reconciliation import ReconciliationCorrector, ReconciliationResult

logger = get_logger(__name__)


class InvoiceStage(IntEnum):
    COLLECTING = 0
    CLASSIFIED = 1
    LINES_BUILT = 2
    RECONCILED = 3
    SUBMITTED = 4


class StageTracker:
    """Forward-only stage bookkeeping for a single generation."""

    def __init__(self, order_number: Optional[str] = None) -> None:
        self.order_number = order_number
        self.stage = InvoiceStage.COLLECTING

    def advance(self, stage: InvoiceStage) -> InvoiceStage:
        if stage != self.stage + 1:
            raise InvalidStageTransitionError(self.stage.name, stage.name)
        logger.debug(f"Order {self.order_number}: {self.stage.name} -> {stage.name}")
        self.stage = stage
        return stage


@dataclass(frozen=True)
class InvoiceDraft:
    order_number: str
    currency: str
    lines: Tuple[InvoiceLine, ...]
    discount: float
    allocation: DiscountAllocation
    built: BuiltInvoiceLines
    reconciliation: ReconciliationResult
    note: str = ""
    stage: InvoiceStage = InvoiceStage.RECONCILED

    @property
    def mode(self) -> DiscountMode:
        return self.allocation.mode

    @property
    def total(self) -> float:
        return self.reconciliation.final_total

    def to_payload(self, header: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Render the invoicing API payload.

        Args:
            header: Caller-owned fields (client, serie, date, ...) merged first

        Returns:
            Payload dictionary with lines, top-level discount and reference
        """
        payload: Dict[str, Any] = dict(header or {})
        payload["lines"] = [line.to_payload() for line in self.lines]
        payload["discount"] = self.discount
        payload["reference"] = self.order_number
        payload.setdefault("observations", "" if self.note == "N/A" else self.note)
        return payload

    def mark_submitted(self) -> "InvoiceDraft":
        if self.stage is not InvoiceStage.RECONCILED:
            raise InvalidStageTransitionError(self.stage.name, InvoiceStage.SUBMITTED.name)
        return replace(self, stage=InvoiceStage.SUBMITTED)


class InvoiceEngine:
    """Pure invoice computation: no I/O, no shared state between calls."""

    def __init__(
        self,
        allocator: Optional[DiscountAllocator] = None,
        builder: Optional[InvoiceLineBuilder] = None,
        corrector: Optional[ReconciliationCorrector] = None,
    ) -> None:
        self.allocator = allocator or DiscountAllocator()
        self.builder = builder or InvoiceLineBuilder()
        self.corrector = corrector or ReconciliationCorrector()

    @classmethod
    def from_config(cls, config) -> "InvoiceEngine":
        return cls(
            allocator=DiscountAllocator(TaxRatePolicy.from_config(config)),
            builder=InvoiceLineBuilder.from_config(config),
            corrector=ReconciliationCorrector.from_config(config),
        )

    def generate(
        self,
        order: Order,
        product_ids: Mapping[str, Union[int, str]],
        shipping_product: Optional[ShippingProduct] = None,
    ) -> InvoiceDraft:
        """
        Compute invoice lines and the reconciled top-level discount for an order.

        Args:
            order: Normalized order
            product_ids: Invoicing product id per line item key, already resolved
            shipping_product: Invoicing product used for the shipping line

        Returns:
            InvoiceDraft in the RECONCILED stage
        """
        tracker = StageTracker(order.order_number)
        logger.info(f"Generating invoice for order {order.order_number}")
        if not order.line_items:
            raise EmptyOrderError(order.order_number)

        allocation = self.allocator.allocate(order)
        tracker.advance(InvoiceStage.CLASSIFIED)

        built = self.builder.build(order, allocation, product_ids, shipping_product)
        tracker.advance(InvoiceStage.LINES_BUILT)

        result = self.corrector.reconcile(
            built.totals,
            expected_total=order.total_value,
            global_discount=allocation.invoice_level_discount_percent,
            order_number=order.order_number,
        )
        tracker.advance(InvoiceStage.RECONCILED)

        return InvoiceDraft(
            order_number=order.order_number,
            currency=order.currency,
            lines=built.lines,
            discount=result.global_discount,
            allocation=allocation,
            built=built,
            reconciliation=result,
            note=order.note,
            stage=tracker.stage,
        )


def submit_invoice(
    draft: InvoiceDraft,
    submitter: Callable[[Dict[str, Any]], Any],
    header: Optional[Mapping[str, Any]] = None,
) -> Tuple[InvoiceDraft, Any]:
    """Hand a reconciled draft to the invoicing collaborator."""
    if draft.stage is not InvoiceStage.RECONCILED:
        raise InvalidStageTransitionError(draft.stage.name, InvoiceStage.SUBMITTED.name)
    response = submitter(draft.to_payload(header))
    logger.info(f"Order {draft.order_number}: invoice submitted")
    return draft.mark_submitted(), response
