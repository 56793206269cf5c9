"""Monetary value normalization and the discount percentage gate."""

from __future__ import annotations

import math
from typing import Any

from ..utils.logging import get_logger
from .errors import InvalidDiscountError

logger = get_logger(__name__)

DISCOUNT_PRECISION = 4


def _parse_amount(raw: Any) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0.0


def get_monetary_value(value: Any, field_name: str = "unknown") -> float:
    """
    Coerce a storefront money representation into a plain float.

    Accepts None, a number, a numeric string, an ``{"amount": ...}`` object or
    a ``{"shopMoney": {"amount": ...}}`` money bag. Anything absent, unparseable,
    non-finite or negative degrades to 0 instead of raising.

    Args:
        value: Raw money value as found in the order payload
        field_name: Label used in log messages

    Returns:
        Non-negative amount
    """
    if value is None:
        logger.warning(f"{field_name} is null or undefined, defaulting to 0")
        return 0.0

    if isinstance(value, dict):
        if "shopMoney" in value and isinstance(value["shopMoney"], dict):
            value = value["shopMoney"]
        if "amount" not in value:
            logger.warning(f"Invalid {field_name} format: {value!r}, defaulting to 0")
            return 0.0
        amount = _parse_amount(value["amount"])
    elif isinstance(value, bool):
        logger.warning(f"Invalid {field_name} format: {value!r}, defaulting to 0")
        return 0.0
    elif isinstance(value, (int, float, str)):
        amount = _parse_amount(value)
    else:
        logger.warning(f"Invalid {field_name} format: {value!r}, defaulting to 0")
        return 0.0

    if not math.isfinite(amount):
        logger.warning(f"{field_name} is not a finite number ({value!r}), defaulting to 0")
        return 0.0
    if amount < 0:
        logger.warning(f"{field_name} is negative ({amount}), defaulting to 0")
        return 0.0
    return amount


def clamp_discount(value: float, context: str = "unknown") -> float:
    """
    Validate a discount percentage and round it to 4 decimals.

    Raises:
        InvalidDiscountError: If value is below 0 or above 100
    """
    if math.isnan(value) or value < 0 or value > 100:
        logger.error(
            f"Invalid discount detected in {context}: {value}%. "
            f"Discounts must be between 0% and 100%."
        )
        raise InvalidDiscountError(value, context)
    return round(value, DISCOUNT_PRECISION)
