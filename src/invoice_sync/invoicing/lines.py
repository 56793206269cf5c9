"""Build invoice lines from a discount allocation and accumulate totals."""

from __future__ import annotations

from dataclasses import dataclass
from functools import reduce
from typing import List, Mapping, Optional, Tuple, Union

from ..utils.logging import get_logger
from .discounts import DiscountAllocation, PricedLine, is_free_shipping
from .errors import UnresolvedProductError
from .models import (
    SHIPPING_KEY,
    InvoiceLine,
    LineType,
    Order,
    ShippingProduct,
    TaxTier,
    truncate_description,
)
from .money import clamp_discount

logger = get_logger(__name__)

PRICE_PRECISION = 3


@dataclass(frozen=True)
class LineAmounts:
    """Monetary effect of a single invoice line, all tax-exclusive except VAT."""

    gross_excl_tax: float
    discount_excl_tax: float
    base_excl_tax: float
    base_vat: float


@dataclass(frozen=True)
class LineTotals:
    total_base_excl_tax: float = 0.0
    total_base_vat: float = 0.0
    total_discount_excl_tax: float = 0.0

    @property
    def gross_total(self) -> float:
        return self.total_base_excl_tax + self.total_base_vat

    def add(self, amounts: LineAmounts) -> "LineTotals":
        return LineTotals(
            total_base_excl_tax=self.total_base_excl_tax + amounts.base_excl_tax,
            total_base_vat=self.total_base_vat + amounts.base_vat,
            total_discount_excl_tax=self.total_discount_excl_tax + amounts.discount_excl_tax,
        )


@dataclass(frozen=True)
class BuiltInvoiceLines:
    lines: Tuple[InvoiceLine, ...]
    totals: LineTotals
    is_free_shipping: bool = False

    @property
    def product_lines(self) -> Tuple[InvoiceLine, ...]:
        return tuple(line for line in self.lines if line.line_type is LineType.PRODUCT)

    @property
    def shipping_line(self) -> Optional[InvoiceLine]:
        for line in self.lines:
            if line.line_type is LineType.SHIPPING:
                return line
        return None


def resolve_tax_tier(rate_percent: float) -> TaxTier:
    """Map a VAT rate onto the invoicing service's tiers, defaulting to NORMAL."""
    tier = TaxTier.from_rate(rate_percent)
    if tier is None:
        logger.warning(f"No tax tier for rate {rate_percent}%, falling back to {TaxTier.NORMAL.name}")
        return TaxTier.NORMAL
    return tier


def line_amounts(price: float, quantity: int, discount_percent: float, tier: TaxTier) -> LineAmounts:
    gross = price * quantity
    discount = gross * (discount_percent / 100.0)
    base = gross - discount
    return LineAmounts(
        gross_excl_tax=gross,
        discount_excl_tax=discount,
        base_excl_tax=base,
        base_vat=base * (tier.rate / 100.0),
    )


def accumulate(entries: List[Tuple[InvoiceLine, LineAmounts]]) -> LineTotals:
    return reduce(lambda totals, entry: totals.add(entry[1]), entries, LineTotals())


class InvoiceLineBuilder:
    """Turn a discount map into the ordered invoice lines for one order."""

    def __init__(self, exemption_code: str = "M01", shipping_description: str = "Custos de Envio") -> None:
        self.exemption_code = exemption_code
        self.shipping_description = shipping_description

    @classmethod
    def from_config(cls, config) -> "InvoiceLineBuilder":
        return cls(
            exemption_code=config.get("exemption_code", "M01"),
            shipping_description=config.get("shipping_description", "Custos de Envio"),
        )

    def build(
        self,
        order: Order,
        allocation: DiscountAllocation,
        product_ids: Mapping[str, Union[int, str]],
        shipping_product: Optional[ShippingProduct] = None,
    ) -> BuiltInvoiceLines:
        """
        Build product lines (input order) followed by the optional shipping line.

        Args:
            order: Normalized order
            allocation: Result of the discount allocator for this order
            product_ids: Invoicing product id per platform product key
            shipping_product: Invoicing product for shipping, if one is configured

        Returns:
            BuiltInvoiceLines with the lines and their running totals
        """
        entries = [self._product_entry(line, allocation, product_ids) for line in allocation.priced_lines]

        free_shipping = False
        if allocation.shipping_price > 0:
            if shipping_product is None:
                logger.warning(
                    f"Order {order.order_number}: no shipping product configured, skipping shipping line"
                )
            else:
                free_shipping = is_free_shipping(order)
                entries.append(self._shipping_entry(allocation, shipping_product, free_shipping))

        totals = accumulate(entries)
        logger.info(
            f"Order {order.order_number}: {len(entries)} invoice lines | base excl. VAT "
            f"{totals.total_base_excl_tax:.4f} | VAT {totals.total_base_vat:.4f} | "
            f"discount excl. VAT {totals.total_discount_excl_tax:.4f}"
        )
        return BuiltInvoiceLines(
            lines=tuple(line for line, _ in entries),
            totals=totals,
            is_free_shipping=free_shipping,
        )

    def _exemption_for(self, tier: TaxTier) -> str:
        return self.exemption_code if tier is TaxTier.EXEMPT else ""

    def _product_entry(
        self,
        line: PricedLine,
        allocation: DiscountAllocation,
        product_ids: Mapping[str, Union[int, str]],
    ) -> Tuple[InvoiceLine, LineAmounts]:
        if line.key not in product_ids:
            raise UnresolvedProductError(line.key)

        tier = resolve_tax_tier(line.tax_rate)
        price = round(line.unit_price_excl_tax, PRICE_PRECISION)
        discount = clamp_discount(allocation.discount_for(line.key), f"invoice line for {line.key}")

        invoice_line = InvoiceLine(
            product_id=product_ids[line.key],
            description=truncate_description(line.title),
            quantity=line.quantity,
            price=price,
            tax_tier=tier,
            discount_percent=discount,
            exemption_code=self._exemption_for(tier),
            line_type=LineType.PRODUCT,
        )
        logger.debug(
            f"Line item: {line.title} | Price (with VAT): {line.unit_price} | Tax Rate: {line.tax_rate}% | "
            f"Price (excl. VAT): {price} | Quantity: {line.quantity} | Discount: {discount}%"
        )
        return invoice_line, line_amounts(price, line.quantity, discount, tier)

    def _shipping_entry(
        self,
        allocation: DiscountAllocation,
        shipping_product: ShippingProduct,
        free_shipping: bool,
    ) -> Tuple[InvoiceLine, LineAmounts]:
        tier = resolve_tax_tier(allocation.shipping_tax_rate)
        price = round(allocation.shipping_excl_tax, PRICE_PRECISION)
        if free_shipping:
            discount = 100.0
        else:
            discount = clamp_discount(allocation.discount_for(SHIPPING_KEY), "shipping line")

        invoice_line = InvoiceLine(
            product_id=shipping_product.product_id,
            description=truncate_description(shipping_product.description or self.shipping_description),
            quantity=1,
            price=price,
            tax_tier=tier,
            discount_percent=discount,
            exemption_code=self._exemption_for(tier),
            line_type=LineType.SHIPPING,
        )
        logger.debug(
            f"Shipping line: Price (with VAT): {allocation.shipping_price} | Tax Rate: "
            f"{allocation.shipping_tax_rate}% | Price (excl. VAT): {price} | Discount: {discount}%"
            + (" (free shipping)" if free_shipping else "")
        )
        return invoice_line, line_amounts(price, 1, discount, tier)
