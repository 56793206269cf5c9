"""Discount classification and per-line discount allocation.

Decides which of three mutually exclusive strategies an order's discounts
follow and derives the discount map consumed by the invoice line builder:

- ORDER_LEVEL: a single general discount (LINE_ITEM / ALL / ACROSS) and
  nothing else. Per-product percentages stay at 0 and the whole discount is
  expressed as one invoice-level percentage.
- PRODUCT_SPECIFIC: entitled discounts, shipping discounts or item-level
  allocations. Each product gets its own percentage computed from the
  allocations recorded on its line; shipping gets its own entry.
- NONE: nothing to discount.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..utils.logging import get_logger
from .errors import MissingIdentifierError
from .models import (
    SHIPPING_KEY,
    DiscountApplication,
    DiscountValue,
    FixedAmountValue,
    LineItem,
    Order,
    PercentageValue,
    TargetType,
)
from .money import clamp_discount

logger = get_logger(__name__)

# Digits kept before range checks; strips binary noise such as 100.00000000000001
FLOAT_NOISE_DIGITS = 9

COUNTRY_CODES = {"Portugal": "PT"}


class DiscountMode(str, Enum):
    ORDER_LEVEL = "order-level"
    PRODUCT_SPECIFIC = "product-specific"
    NONE = "none"


class TaxRatePolicy:
    """Resolves VAT rates for lines that do not carry an explicit tax line."""

    def __init__(self, home_country: str = "Portugal", home_rate: float = 23.0) -> None:
        self.home_country = home_country
        self.home_rate = home_rate

    @classmethod
    def from_config(cls, config) -> "TaxRatePolicy":
        return cls(
            home_country=config.get("default_country", "Portugal"),
            home_rate=float(config.get("default_vat_rate", 23.0)),
        )

    def is_home(self, country: Optional[str]) -> bool:
        # Orders without a destination are treated as domestic
        if not country:
            return True
        candidates = {self.home_country.lower()}
        code = COUNTRY_CODES.get(self.home_country)
        if code:
            candidates.add(code.lower())
        return country.strip().lower() in candidates

    def country_rate(self, country: Optional[str]) -> float:
        return self.home_rate if self.is_home(country) else 0.0

    def line_rate(self, item: LineItem, country: Optional[str]) -> float:
        if item.tax_lines:
            explicit = item.tax_lines[0].percent
            if explicit is not None:
                return explicit
        if not item.taxable:
            return 0.0
        return self.country_rate(country)

    def shipping_rate(self, order: Order) -> float:
        line = order.shipping_line
        if line is not None and line.tax_lines:
            explicit = line.tax_lines[0].percent
            if explicit is not None:
                return explicit
        return self.country_rate(order.country)


@dataclass(frozen=True)
class PricedLine:
    """A line item with its tax rate and tax-exclusive price resolved."""

    key: str
    title: str
    quantity: int
    unit_price: float
    unit_price_excl_tax: float
    tax_rate: float
    discount_with_vat: float

    @property
    def subtotal_excl_tax(self) -> float:
        return self.unit_price_excl_tax * self.quantity

    @property
    def vat(self) -> float:
        return self.subtotal_excl_tax * (self.tax_rate / 100.0)

    @property
    def subtotal_with_vat(self) -> float:
        return self.subtotal_excl_tax + self.vat

    @property
    def discount_excl_tax(self) -> float:
        return self.discount_with_vat / (1 + self.tax_rate / 100.0)


@dataclass(frozen=True)
class DiscountAllocation:
    """Immutable outcome of classifying and allocating an order's discounts."""

    mode: DiscountMode
    discount_map: Mapping[str, float]
    priced_lines: Tuple[PricedLine, ...]
    subtotal_excl_tax: float
    subtotal_with_vat: float
    shipping_price: float
    shipping_tax_rate: float
    shipping_excl_tax: float
    weighted_tax_rate: float
    invoice_level_discount_percent: float
    invoice_level_discount: float
    discount_amount_excl_tax: float
    has_general_discount: bool
    has_entitled_discount: bool
    has_shipping_discount: bool

    @property
    def total_excl_tax(self) -> float:
        return self.subtotal_excl_tax + self.shipping_excl_tax

    @property
    def total_with_vat(self) -> float:
        return self.subtotal_with_vat + self.shipping_price

    @property
    def all_products_zero_tax(self) -> bool:
        return all(line.tax_rate == 0 for line in self.priced_lines)

    def discount_for(self, key: str) -> float:
        return self.discount_map.get(key, 0.0)


def _settle(value: float) -> float:
    return round(value, FLOAT_NOISE_DIGITS)


def nominal_discount(value: DiscountValue, base_with_vat: float) -> Tuple[float, float]:
    """
    Resolve a discount value against a tax-inclusive base.

    Returns:
        Tuple of (percentage of the base, tax-inclusive amount)
    """
    if isinstance(value, PercentageValue):
        return value.percentage, base_with_vat * (value.percentage / 100.0)
    if isinstance(value, FixedAmountValue):
        percent = (value.amount / base_with_vat) * 100.0 if base_with_vat > 0 else 0.0
        return percent, value.amount
    raise TypeError(f"Unhandled discount value variant: {type(value).__name__}")


def is_free_shipping(order: Order) -> bool:
    """True when a shipping-targeted discount covers the whole shipping price."""
    line = order.shipping_line
    if line is None or line.price <= 0:
        return False
    for application in order.discount_applications:
        if application.target_type is not TargetType.SHIPPING_LINE:
            continue
        value = application.value
        if isinstance(value, PercentageValue):
            if value.percentage >= 100:
                return True
        elif isinstance(value, FixedAmountValue):
            if value.amount >= line.price:
                return True
        else:
            raise TypeError(f"Unhandled discount value variant: {type(value).__name__}")
    return False


class DiscountAllocator:
    """Classify an order's discounts and compute its discount map."""

    def __init__(self, tax_policy: Optional[TaxRatePolicy] = None) -> None:
        self.tax_policy = tax_policy or TaxRatePolicy()

    def allocate(self, order: Order) -> DiscountAllocation:
        """
        Compute the discount map and order subtotals for one order.

        Args:
            order: Normalized order

        Returns:
            DiscountAllocation with the chosen mode and per-line percentages

        Raises:
            MissingIdentifierError: A line item has no product or variant id
            InvalidDiscountError: A derived percentage falls outside [0, 100]
        """
        priced_lines = tuple(self._price_line(order, item) for item in order.line_items)

        subtotal_excl_tax = sum(line.subtotal_excl_tax for line in priced_lines)
        subtotal_with_vat = sum(line.subtotal_with_vat for line in priced_lines)

        shipping_price = order.shipping_line.price if order.shipping_line else 0.0
        shipping_tax_rate = self._shipping_tax_rate(order, priced_lines)
        shipping_excl_tax = shipping_price / (1 + shipping_tax_rate / 100.0)

        applications = order.discount_applications
        has_general = any(app.is_general for app in applications)
        has_entitled = any(app.is_entitled for app in applications)
        has_shipping = any(app.is_shipping for app in applications)
        has_item_allocations = any(line.discount_with_vat > 0 for line in priced_lines)

        mode = self._classify(has_general, has_entitled, has_shipping, has_item_allocations)
        logger.info(
            f"Order {order.order_number}: discount mode {mode.value} "
            f"(general={has_general}, entitled={has_entitled}, shipping={has_shipping}, "
            f"item_allocations={has_item_allocations})"
        )

        weighted_tax_rate = (
            (subtotal_with_vat - subtotal_excl_tax) / subtotal_excl_tax
            if subtotal_excl_tax > 0
            else self.tax_policy.home_rate / 100.0
        )

        discount_map: Dict[str, float] = {line.key: 0.0 for line in priced_lines}
        discount_map[SHIPPING_KEY] = 0.0
        invoice_percent = 0.0
        invoice_amount = 0.0
        discount_excl_total = 0.0

        if mode is DiscountMode.ORDER_LEVEL:
            invoice_percent, invoice_amount = self._order_level_discount(
                order,
                subtotal_with_vat=subtotal_with_vat,
                total_with_vat=subtotal_with_vat + shipping_price,
                weighted_tax_rate=weighted_tax_rate,
            )
            discount_excl_total = invoice_amount
        elif mode is DiscountMode.PRODUCT_SPECIFIC:
            discount_excl_total = self._product_specific_discounts(priced_lines, discount_map)
            shipping_percent = self._shipping_discount_percent(order, shipping_price)
            discount_map[SHIPPING_KEY] = shipping_percent
            discount_excl_total += shipping_excl_tax * (shipping_percent / 100.0)

        logger.debug(
            f"Order {order.order_number}: subtotal excl. VAT {subtotal_excl_tax:.4f}, "
            f"with VAT {subtotal_with_vat:.4f}, shipping {shipping_price:.2f} @ {shipping_tax_rate}% | "
            f"discount excl. VAT {discount_excl_total:.4f} | map {dict(discount_map)}"
        )

        return DiscountAllocation(
            mode=mode,
            discount_map=MappingProxyType(discount_map),
            priced_lines=priced_lines,
            subtotal_excl_tax=subtotal_excl_tax,
            subtotal_with_vat=subtotal_with_vat,
            shipping_price=shipping_price,
            shipping_tax_rate=shipping_tax_rate,
            shipping_excl_tax=shipping_excl_tax,
            weighted_tax_rate=weighted_tax_rate,
            invoice_level_discount_percent=invoice_percent,
            invoice_level_discount=invoice_amount,
            discount_amount_excl_tax=discount_excl_total,
            has_general_discount=has_general,
            has_entitled_discount=has_entitled,
            has_shipping_discount=has_shipping,
        )

    def _price_line(self, order: Order, item: LineItem) -> PricedLine:
        key = item.key
        if not key:
            raise MissingIdentifierError(item.title, order.order_number)

        tax_rate = self.tax_policy.line_rate(item, order.country)
        if item.unit_price_excl_tax is not None:
            unit_excl = item.unit_price_excl_tax
        else:
            unit_excl = item.unit_price / (1 + tax_rate / 100.0)

        return PricedLine(
            key=key,
            title=item.title,
            quantity=item.quantity,
            unit_price=item.unit_price,
            unit_price_excl_tax=unit_excl,
            tax_rate=tax_rate,
            discount_with_vat=item.total_discount,
        )

    def _shipping_tax_rate(self, order: Order, priced_lines: Sequence[PricedLine]) -> float:
        if order.shipping_line is None:
            return 0.0
        # Shipping follows the products when the whole order is VAT-free
        if all(line.tax_rate == 0 for line in priced_lines):
            return 0.0
        return self.tax_policy.shipping_rate(order)

    @staticmethod
    def _classify(has_general: bool, has_entitled: bool, has_shipping: bool, has_item_allocations: bool) -> DiscountMode:
        if has_general and not has_entitled and not has_shipping:
            return DiscountMode.ORDER_LEVEL
        if has_entitled or has_shipping or has_item_allocations:
            return DiscountMode.PRODUCT_SPECIFIC
        return DiscountMode.NONE

    def _order_level_discount(
        self,
        order: Order,
        subtotal_with_vat: float,
        total_with_vat: float,
        weighted_tax_rate: float,
    ) -> Tuple[float, float]:
        general: List[DiscountApplication] = [app for app in order.discount_applications if app.is_general]
        if len(general) > 1:
            logger.warning(
                f"Order {order.order_number} has {len(general)} general discounts; only the first is applied"
            )

        nominal_percent, expected_with_vat = nominal_discount(general[0].value, subtotal_with_vat)
        invoice_percent = (expected_with_vat / total_with_vat) * 100.0 if total_with_vat > 0 else 0.0
        invoice_percent = clamp_discount(_settle(invoice_percent), f"order-level discount for order {order.order_number}")
        invoice_amount = expected_with_vat / (1 + weighted_tax_rate)

        logger.info(
            f"Order {order.order_number}: general discount {nominal_percent:.4f}% "
            f"({expected_with_vat:.2f} with VAT, {invoice_amount:.3f} excl. VAT, "
            f"weighted VAT {weighted_tax_rate * 100:.2f}%) -> invoice discount {invoice_percent:.4f}%"
        )
        return invoice_percent, invoice_amount

    def _product_specific_discounts(self, priced_lines: Sequence[PricedLine], discount_map: Dict[str, float]) -> float:
        # Lines sharing a product id are merged so the map holds one percentage per product
        discount_excl: Dict[str, float] = {}
        subtotal_excl: Dict[str, float] = {}
        for line in priced_lines:
            discount_excl[line.key] = discount_excl.get(line.key, 0.0) + line.discount_excl_tax
            subtotal_excl[line.key] = subtotal_excl.get(line.key, 0.0) + line.subtotal_excl_tax

        total = 0.0
        for key, discount in discount_excl.items():
            base = subtotal_excl[key]
            percent = (discount / base) * 100.0 if base > 0 else 0.0
            discount_map[key] = clamp_discount(_settle(percent), f"product-specific discount for {key}")
            total += discount
            logger.debug(
                f"Product {key}: discount {discount:.3f} excl. VAT ({discount_map[key]:.4f}%)"
            )
        return total

    def _shipping_discount_percent(self, order: Order, shipping_price: float) -> float:
        if shipping_price <= 0:
            return 0.0

        line = order.shipping_line
        if line is not None and line.discount_allocations:
            amount = sum(line.discount_allocations)
        else:
            amount = 0.0
            for application in order.discount_applications:
                if not application.is_shipping:
                    continue
                value = application.value
                if isinstance(value, PercentageValue):
                    amount += shipping_price * (min(value.percentage, 100.0) / 100.0)
                elif isinstance(value, FixedAmountValue):
                    amount += value.amount
                else:
                    raise TypeError(f"Unhandled discount value variant: {type(value).__name__}")

        if amount >= shipping_price:
            return 100.0
        return clamp_discount(_settle((amount / shipping_price) * 100.0), "shipping discount")
