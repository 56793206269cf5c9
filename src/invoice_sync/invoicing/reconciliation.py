"""Last-mile correction of the invoice-level discount.

Per-line rounding (3-decimal prices) and tier-based VAT can never reproduce
the storefront total exactly. When the computed total drifts from the
authoritative total by more than the tolerance, the residual is absorbed
into the invoice's single top-level discount percentage.

A discount can only lower the total. When the lines come to less than the
platform total the discount is floored at 0 and the shortfall is kept on the
result as ``residual`` instead of rejecting the invoice.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Optional

from ..utils.logging import get_logger
from .errors import ReconciliationDivergenceWarning
from .lines import LineTotals
from .money import DISCOUNT_PRECISION, clamp_discount

logger = get_logger(__name__)

DEFAULT_TOLERANCE = 0.01


@dataclass(frozen=True)
class ReconciliationResult:
    global_discount: float
    initial_discount: float
    gross_total: float
    calculated_total: float
    expected_total: float
    final_total: float
    corrected: bool
    # Expected minus final total left over once the discount hit its floor
    residual: float = 0.0

    @property
    def divergence(self) -> float:
        return self.calculated_total - self.expected_total

    @property
    def final_divergence(self) -> float:
        return self.final_total - self.expected_total


def invoice_total(gross_total: float, global_discount: float) -> float:
    return gross_total * (1 - global_discount / 100.0)


def _warn(order_number: Optional[str], calculated: float, expected: float) -> None:
    warning = ReconciliationDivergenceWarning(order_number, calculated, expected)
    logger.warning(str(warning))
    warnings.warn(warning, stacklevel=3)


class ReconciliationCorrector:
    """Force the invoice total to agree with the platform total."""

    def __init__(self, tolerance: float = DEFAULT_TOLERANCE) -> None:
        self.tolerance = tolerance

    @classmethod
    def from_config(cls, config) -> "ReconciliationCorrector":
        return cls(tolerance=float(config.get("reconciliation_tolerance", DEFAULT_TOLERANCE)))

    def reconcile(
        self,
        totals: LineTotals,
        expected_total: float,
        global_discount: float = 0.0,
        order_number: Optional[str] = None,
    ) -> ReconciliationResult:
        """
        Compare the computed total with the expected one and correct the discount.

        Args:
            totals: Running totals from the invoice line builder
            expected_total: Tax-inclusive order total reported by the platform
            global_discount: Invoice-level discount percentage before correction
            order_number: Used for log and warning context only

        Returns:
            ReconciliationResult carrying the (possibly corrected) discount and
            any residual the discount could not absorb
        """
        gross = totals.gross_total
        calculated = invoice_total(gross, global_discount)
        divergence = calculated - expected_total

        if abs(divergence) <= self.tolerance:
            logger.debug(
                f"Order {order_number}: calculated total {calculated:.4f} matches expected {expected_total:.4f}"
            )
            return ReconciliationResult(
                global_discount=global_discount,
                initial_discount=global_discount,
                gross_total=gross,
                calculated_total=calculated,
                expected_total=expected_total,
                final_total=calculated,
                corrected=False,
            )

        _warn(order_number, calculated, expected_total)

        if gross <= 0:
            logger.error(f"Order {order_number}: nothing to discount, leaving discount at {global_discount}%")
            return ReconciliationResult(
                global_discount=global_discount,
                initial_discount=global_discount,
                gross_total=gross,
                calculated_total=calculated,
                expected_total=expected_total,
                final_total=calculated,
                corrected=False,
                residual=expected_total - calculated,
            )

        raw_discount = round(100.0 * (1 - expected_total / gross), DISCOUNT_PRECISION)
        new_discount = clamp_discount(max(raw_discount, 0.0), f"reconciliation of order {order_number}")
        final_total = invoice_total(gross, new_discount)
        residual = 0.0

        if raw_discount < 0:
            residual = expected_total - final_total
            logger.warning(
                f"Order {order_number}: invoice lines fall short of the expected total by {residual:.4f}; "
                f"discount floored at 0%"
            )
            if abs(residual) > self.tolerance:
                _warn(order_number, final_total, expected_total)

        logger.info(
            f"Order {order_number}: global discount corrected {global_discount}% -> {new_discount}% "
            f"(final total {final_total:.4f}, expected {expected_total:.4f})"
        )
        return ReconciliationResult(
            global_discount=new_discount,
            initial_discount=global_discount,
            gross_total=gross,
            calculated_total=calculated,
            expected_total=expected_total,
            final_total=final_total,
            corrected=new_discount != global_discount,
            residual=residual,
        )
