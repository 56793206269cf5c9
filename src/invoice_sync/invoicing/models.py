"""Order and invoice value objects plus parsing of raw storefront orders."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .money import get_monetary_value

SHIPPING_KEY = "shipping"
DESCRIPTION_MAX_LENGTH = 100


class TargetType(str, Enum):
    LINE_ITEM = "LINE_ITEM"
    SHIPPING_LINE = "SHIPPING_LINE"


class TargetSelection(str, Enum):
    ALL = "ALL"
    ENTITLED = "ENTITLED"
    EXPLICIT = "EXPLICIT"


class AllocationMethod(str, Enum):
    ACROSS = "ACROSS"
    EACH = "EACH"
    ONE = "ONE"


class LineType(str, Enum):
    PRODUCT = "Product"
    SHIPPING = "Shipping"


class TaxTier(IntEnum):
    """VAT tiers as identified by the invoicing service."""

    NORMAL = 1
    INTERMEDIATE = 2
    REDUCED = 3
    EXEMPT = 4

    @property
    def rate(self) -> float:
        return TIER_RATES[self]

    @classmethod
    def from_rate(cls, rate_percent: float) -> Optional["TaxTier"]:
        for tier, tier_rate in TIER_RATES.items():
            if abs(tier_rate - rate_percent) < 1e-6:
                return tier
        return None


TIER_RATES: Dict[TaxTier, float] = {
    TaxTier.NORMAL: 23.0,
    TaxTier.INTERMEDIATE: 13.0,
    TaxTier.REDUCED: 6.0,
    TaxTier.EXEMPT: 0.0,
}


@dataclass(frozen=True)
class PercentageValue:
    percentage: float


@dataclass(frozen=True)
class FixedAmountValue:
    """Fixed, tax-inclusive discount amount."""

    amount: float


DiscountValue = Union[PercentageValue, FixedAmountValue]


@dataclass(frozen=True)
class TaxLine:
    rate: Optional[float] = None
    rate_percentage: Optional[float] = None

    @property
    def percent(self) -> Optional[float]:
        if self.rate_percentage is not None:
            return self.rate_percentage
        if self.rate is not None:
            return self.rate * 100
        return None


@dataclass(frozen=True)
class LineItem:
    title: str
    product_id: Optional[str]
    quantity: int
    unit_price: float
    variant_id: Optional[str] = None
    taxable: bool = True
    tax_lines: Tuple[TaxLine, ...] = ()
    discount_allocations: Tuple[float, ...] = ()
    unit_price_excl_tax: Optional[float] = None
    sku: Optional[str] = None

    @property
    def key(self) -> Optional[str]:
        """Platform-scoped identifier used as the discount map key."""
        return self.product_id or self.variant_id

    @property
    def total_discount(self) -> float:
        return sum(self.discount_allocations)


@dataclass(frozen=True)
class DiscountApplication:
    target_type: TargetType
    target_selection: TargetSelection
    allocation_method: AllocationMethod
    value: DiscountValue
    title: Optional[str] = None

    @property
    def is_general(self) -> bool:
        return (
            self.target_type is TargetType.LINE_ITEM
            and self.target_selection is TargetSelection.ALL
            and self.allocation_method is AllocationMethod.ACROSS
        )

    @property
    def is_entitled(self) -> bool:
        return (
            self.target_type is TargetType.LINE_ITEM
            and self.target_selection is TargetSelection.ENTITLED
            and self.allocation_method is AllocationMethod.EACH
        )

    @property
    def is_shipping(self) -> bool:
        return (
            self.target_type is TargetType.SHIPPING_LINE
            and self.target_selection is TargetSelection.ALL
        )


@dataclass(frozen=True)
class ShippingLine:
    price: float
    title: str = ""
    tax_lines: Tuple[TaxLine, ...] = ()
    discount_allocations: Tuple[float, ...] = ()


@dataclass(frozen=True)
class Order:
    order_number: str
    total_value: float
    line_items: Tuple[LineItem, ...]
    discount_applications: Tuple[DiscountApplication, ...] = ()
    shipping_line: Optional[ShippingLine] = None
    country: Optional[str] = None
    currency: str = "EUR"
    total_discounts: float = 0.0
    order_id: Optional[str] = None
    note: str = ""


@dataclass(frozen=True)
class ShippingProduct:
    """Invoicing-side product used for the shipping line."""

    product_id: int
    description: str = ""


@dataclass(frozen=True)
class InvoiceLine:
    product_id: Union[int, str]
    description: str
    quantity: int
    price: float
    tax_tier: TaxTier
    discount_percent: float
    exemption_code: str = ""
    line_type: LineType = LineType.PRODUCT

    def to_payload(self) -> Dict[str, Any]:
        """Render the line in the invoicing API's line-item shape."""
        return {
            "id": self.product_id,
            "tax": int(self.tax_tier),
            "quantity": self.quantity,
            "price": self.price,
            "description": self.description,
            "discount": self.discount_percent,
            "retention": 0,
            "exemption_reason": self.exemption_code,
        }


def strip_gid(value: Any) -> Optional[str]:
    """Return the trailing segment of a ``gid://`` identifier."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text.rstrip("/").split("/")[-1] or None


def truncate_description(text: str) -> str:
    return (text or "")[:DESCRIPTION_MAX_LENGTH]


# Raw payload parsing -----------------------------------------------------

def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_flag(value: Any, default: bool) -> bool:
    """Read a boolean that may arrive as a string ("false", "0", "no", ...)."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _parse_tax_lines(raw_lines: Optional[Iterable[Dict[str, Any]]]) -> Tuple[TaxLine, ...]:
    return tuple(
        TaxLine(
            rate=_optional_float(raw.get("rate")),
            rate_percentage=_optional_float(raw.get("ratePercentage")),
        )
        for raw in raw_lines or ()
    )


def _parse_allocations(raw_allocations: Optional[Iterable[Any]], field_name: str) -> Tuple[float, ...]:
    amounts = []
    for raw in raw_allocations or ():
        if isinstance(raw, dict) and "allocatedAmountSet" in raw:
            raw = raw["allocatedAmountSet"]
        amounts.append(get_monetary_value(raw, field_name))
    return tuple(amounts)


def parse_discount_value(raw: Dict[str, Any]) -> DiscountValue:
    """Turn a raw discount value into its tagged variant.

    Storefront payloads tag the variant with ``__typename``; older exports
    omit the tag, in which case the single value key decides.
    """
    typename = raw.get("__typename")
    if typename == "PricingPercentageValue":
        return PercentageValue(percentage=get_monetary_value(raw.get("percentage"), "discount percentage"))
    if typename == "MoneyV2":
        return FixedAmountValue(amount=get_monetary_value(raw, "discount amount"))
    if typename is None:
        if "percentage" in raw:
            return PercentageValue(percentage=get_monetary_value(raw.get("percentage"), "discount percentage"))
        if "amount" in raw:
            return FixedAmountValue(amount=get_monetary_value(raw, "discount amount"))
    raise ValueError(f"Unsupported discount value: {raw!r}")


def _unwrap_applications(raw: Any) -> List[Dict[str, Any]]:
    if isinstance(raw, dict):
        raw = raw.get("edges", [])
    nodes = []
    for entry in raw or ():
        nodes.append(entry["node"] if isinstance(entry, dict) and "node" in entry else entry)
    return nodes


def discount_application_from_dict(raw: Dict[str, Any]) -> DiscountApplication:
    return DiscountApplication(
        target_type=TargetType(raw["targetType"]),
        target_selection=TargetSelection(raw["targetSelection"]),
        allocation_method=AllocationMethod(raw.get("allocationMethod", AllocationMethod.ACROSS.value)),
        value=parse_discount_value(raw.get("value") or {}),
        title=raw.get("title") or raw.get("code"),
    )


def line_item_from_dict(raw: Dict[str, Any]) -> LineItem:
    title = raw.get("title") or ""
    unit_price_raw = raw.get("originalUnitPriceSet") or raw.get("unitPrice")
    excl_raw = raw.get("unitPriceExclTax")
    return LineItem(
        title=title,
        product_id=strip_gid(raw.get("productId")),
        variant_id=strip_gid(raw.get("variantId")),
        quantity=int(raw.get("quantity") or 1),
        unit_price=get_monetary_value(unit_price_raw, f"unitPrice of {title}"),
        taxable=_parse_flag(raw.get("taxable"), default=True),
        tax_lines=_parse_tax_lines(raw.get("taxLines")),
        discount_allocations=_parse_allocations(raw.get("discountAllocations"), f"discount allocation of {title}"),
        unit_price_excl_tax=(
            get_monetary_value(excl_raw, f"unitPriceExclTax of {title}") if excl_raw is not None else None
        ),
        sku=raw.get("sku") or None,
    )


def shipping_line_from_dict(raw: Optional[Dict[str, Any]]) -> Optional[ShippingLine]:
    if not raw:
        return None
    price_raw = raw.get("originalPriceSet") or raw.get("price")
    return ShippingLine(
        price=get_monetary_value(price_raw, "shippingLine.price"),
        title=raw.get("title") or "",
        tax_lines=_parse_tax_lines(raw.get("taxLines")),
        discount_allocations=_parse_allocations(raw.get("discountAllocations"), "shipping discount allocation"),
    )


def order_from_dict(raw: Dict[str, Any]) -> Order:
    """
    Build an ``Order`` from a normalized storefront order document.

    Args:
        raw: Order dictionary with camelCase keys (orderNumber, totalValue,
            lineItems, discountApplications, shippingLine, shippingAddress)

    Returns:
        Immutable Order value object
    """
    shipping_address = raw.get("shippingAddress") or {}
    total_raw = raw.get("totalValue", raw.get("totalPriceSet"))
    return Order(
        order_number=str(raw.get("orderNumber") or raw.get("name") or ""),
        order_id=strip_gid(raw.get("id")),
        currency=raw.get("currency") or raw.get("currencyCode") or "EUR",
        total_value=get_monetary_value(total_raw, "totalValue"),
        total_discounts=get_monetary_value(raw.get("totalDiscountsSet", 0), "totalDiscountsSet"),
        line_items=tuple(line_item_from_dict(item) for item in raw.get("lineItems") or ()),
        discount_applications=tuple(
            discount_application_from_dict(node) for node in _unwrap_applications(raw.get("discountApplications"))
        ),
        shipping_line=shipping_line_from_dict(raw.get("shippingLine")),
        country=shipping_address.get("country"),
        note=raw.get("note") or "",
    )
