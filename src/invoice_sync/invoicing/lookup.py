"""Ordered lookup strategies for mapping line items to invoicing products.

Products are registered in the invoicing service under a code derived from
the storefront identifier. Older registrations used the variant id or the
SKU instead, so each strategy is tried in turn and the first hit wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from ..utils.logging import get_logger
from .errors import MissingIdentifierError, UnresolvedProductError
from .models import LineItem, Order

logger = get_logger(__name__)

ProductRef = Union[int, str]
V = TypeVar("V")


@dataclass(frozen=True)
class LookupStrategy:
    name: str
    key_for: Callable[[LineItem], Optional[str]]


def first_match(
    strategies: Sequence[LookupStrategy],
    item: LineItem,
    lookup: Callable[[str], Optional[V]],
) -> Tuple[Optional[V], List[str]]:
    """
    Try each strategy in order, stopping at the first key the lookup knows.

    Returns:
        Tuple of (match or None, keys tried in order)
    """
    tried: List[str] = []
    for strategy in strategies:
        key = strategy.key_for(item)
        if not key or key in tried:
            continue
        tried.append(key)
        found = lookup(key)
        if found is not None:
            logger.debug(f"Resolved {item.title!r} via {strategy.name} ({key})")
            return found, tried
    return None, tried


def default_strategies(prefix: str = "sho") -> Tuple[LookupStrategy, ...]:
    return (
        LookupStrategy("product code", lambda item: f"{prefix}{item.product_id}" if item.product_id else None),
        LookupStrategy("variant code", lambda item: f"{prefix}{item.variant_id}" if item.variant_id else None),
        LookupStrategy("sku", lambda item: item.sku),
    )


class ProductResolver:
    """Resolve invoicing product ids from a code -> id catalog."""

    def __init__(
        self,
        catalog: Mapping[str, ProductRef],
        strategies: Optional[Sequence[LookupStrategy]] = None,
        prefix: str = "sho",
    ) -> None:
        self.catalog = dict(catalog)
        self.strategies = tuple(strategies) if strategies is not None else default_strategies(prefix)

    def resolve(self, item: LineItem) -> ProductRef:
        found, tried = first_match(self.strategies, item, self.catalog.get)
        if found is None:
            raise UnresolvedProductError(item.key or item.title, tried)
        return found

    def resolve_order(self, order: Order) -> Dict[str, ProductRef]:
        """Map every line item key of the order to its invoicing product id."""
        resolved: Dict[str, ProductRef] = {}
        for item in order.line_items:
            if not item.key:
                raise MissingIdentifierError(item.title, order.order_number)
            if item.key not in resolved:
                resolved[item.key] = self.resolve(item)
        return resolved
