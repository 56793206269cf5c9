"""
Command-line interface for Invoice Sync.
"""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv

from . import __version__
from .invoicing.engine import InvoiceDraft
from .invoicing.errors import InvoiceSyncError
from .invoicing.models import LineType, ShippingProduct
from .invoicing.service import InvoiceService
from .utils.config import Config
from .utils.logging import get_logger, setup_logging


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        description="Invoice Sync - storefront order to invoice reconciliation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  invoice-sync --version
  invoice-sync build-invoice --order-file order.json
  invoice-sync build-invoice --order-number 1001 --env production
  invoice-sync build-invoice --order-file order.json --json
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Invoice Sync {__version__}",
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    parser.add_argument(
        "--log-file",
        help="Log file path",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
    )

    build_parser = subparsers.add_parser(
        "build-invoice",
        help="Compute invoice lines and the reconciled discount for an order",
    )
    source = build_parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--order-file",
        type=str,
        help="JSON bundle with \"order\", \"catalog\" and optional \"shippingProduct\" keys",
    )
    source.add_argument(
        "--order-number",
        type=str,
        help="Order number to load from the order store",
    )
    build_parser.add_argument(
        "--env",
        type=str,
        choices=["staging", "production", "stg", "prod"],
        default="staging",
        help="Database environment for --order-number (default: staging)",
    )
    build_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the invoicing API payload as JSON instead of tables",
    )

    return parser


def load_order_file(path: str) -> Tuple[Dict[str, Any], Dict[str, Any], Optional[ShippingProduct]]:
    """
    Read an order bundle from disk.

    Args:
        path: JSON file with "order", "catalog" and optional "shippingProduct" keys

    Returns:
        Tuple of (raw order, catalog, shipping product)

    Raises:
        ValueError: The file is not a bundle with both "order" and "catalog"
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict) or "order" not in data or "catalog" not in data:
        raise ValueError(
            f"{path} must hold an object with \"order\" and \"catalog\" keys; "
            f"use --order-number to build from the order store"
        )

    shipping = data.get("shippingProduct")
    shipping_product = None
    if shipping and shipping.get("productId") is not None:
        shipping_product = ShippingProduct(
            product_id=int(shipping["productId"]),
            description=shipping.get("description") or "",
        )
    return data["order"], data.get("catalog") or {}, shipping_product


def _print_box(header_lines) -> None:
    label_width = max(len(lbl) for lbl, _ in header_lines)
    inner_width = max(len(f" {lbl.ljust(label_width)} : {val}") for lbl, val in header_lines)
    print("┌" + "─" * inner_width + "┐")
    for lbl, val in header_lines:
        line = f" {lbl.ljust(label_width)} : {val}"
        print(f"│{line + ' ' * (inner_width - len(line))}│")
    print("└" + "─" * inner_width + "┘")


def render_draft(draft: InvoiceDraft) -> None:
    """Print the draft as a boxed header, a line table and a reconciliation block."""
    allocation = draft.allocation
    result = draft.reconciliation
    _print_box([
        ("Order", draft.order_number),
        ("Currency", draft.currency),
        ("Discount mode", draft.mode.value),
        ("Invoice discount", f"{draft.discount:.4f}%"),
    ])

    print("\nINVOICE LINES:")
    print("=" * 78)
    header = f"{'Type':<10}{'Product':>10}  {'Description':<24}{'Qty':>5}{'Price':>11}{'Tier':>6}{'Disc %':>12}"
    print(header)
    print("-" * len(header))
    for line in draft.lines:
        kind = "shipping" if line.line_type is LineType.SHIPPING else "product"
        print(
            f"{kind:<10}{str(line.product_id):>10}  {line.description[:22]:<24}{line.quantity:>5}"
            f"{line.price:>11.3f}{int(line.tax_tier):>6}{line.discount_percent:>12.4f}"
        )
    if draft.built.is_free_shipping:
        print("   Free shipping applied")

    print("\nTOTALS:")
    print("=" * 78)
    totals = draft.built.totals
    print(f"   Subtotal excl. VAT (before discounts): {allocation.total_excl_tax:.4f}")
    print(f"   Base excl. VAT:                        {totals.total_base_excl_tax:.4f}")
    print(f"   Base VAT:                              {totals.total_base_vat:.4f}")
    print(f"   Line discounts excl. VAT:              {totals.total_discount_excl_tax:.4f}")

    print("\nRECONCILIATION:")
    print("=" * 78)
    if result.residual:
        status = "\033[1;31mRESIDUAL\033[0m"
    elif result.corrected:
        status = "\033[1;33mCORRECTED\033[0m"
    else:
        status = "\033[1;32mMATCHED\033[0m"
    print(f"   Status:           {status}")
    print(f"   Expected total:   {result.expected_total:.2f}")
    print(f"   Calculated total: {result.calculated_total:.4f} (Δ={result.divergence:+.4f})")
    if result.corrected:
        print(f"   Discount:         {result.initial_discount:.4f}% -> {result.global_discount:.4f}%")
    print(f"   Final total:      {result.final_total:.4f} (Δ={result.final_divergence:+.4f})")
    if result.residual:
        print(f"   Residual:         {result.residual:+.4f} not absorbed by the discount")


def build_invoice(
    order_file: Optional[str] = None,
    order_number: Optional[str] = None,
    environment: str = "staging",
    as_json: bool = False,
) -> int:
    """
    Build and display an invoice draft for one order.

    Args:
        order_file: Local JSON order bundle
        order_number: Order number to load from MongoDB instead
        environment: Database environment ("staging", "production", "stg", "prod")
        as_json: Print the API payload instead of the tables

    Returns:
        Exit code
    """
    logger = get_logger(__name__)

    try:
        if order_file:
            logger.info(f"Building invoice from file: {order_file}")
            raw_order, catalog, shipping_product = load_order_file(order_file)
            draft = InvoiceService(config=Config()).build_invoice(raw_order, catalog, shipping_product)
        else:
            draft = _build_from_store(order_number, environment)
    except InvoiceSyncError as e:
        print(f"Error: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Error: {e}")
        print(f"Error: {e}")
        return 1

    if as_json:
        print(json.dumps(draft.to_payload(), indent=2, ensure_ascii=False))
    else:
        render_draft(draft)
    return 0


def _build_from_store(order_number: str, environment: str) -> InvoiceDraft:
    """Load an order from the environment's order store and build its draft."""
    logger = get_logger(__name__)
    load_dotenv(".env")

    env_map = {
        "staging": "stg",
        "stg": "stg",
        "production": "prod",
        "prod": "prod",
    }
    env_key = env_map.get(environment.lower(), "stg")

    db_configs = {
        "stg": {
            "db_name_key": "DB_NAME_STG",
            "connection_url": "DB_CONNECTION_URL_STG",
        },
        "prod": {
            "db_name_key": "DB_NAME_PROD",
            "connection_url": "DB_CONNECTION_URL_PROD",
        },
    }
    db_config = db_configs[env_key]
    db_name = os.getenv(db_config["db_name_key"]) or os.getenv("DB_NAME")

    logger.info(f"Building invoice for order: {order_number} in {environment} environment")
    service = InvoiceService(
        db_name=db_name,
        connection_url_env_key=db_config["connection_url"],
        config=Config(".env"),
    )
    return service.build_invoice_by_number(order_number)


def main(args: Optional[list] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    log_level = "DEBUG" if parsed_args.verbose else "INFO"
    if getattr(parsed_args, "json", False) and not parsed_args.verbose:
        # Keep stdout parseable
        log_level = "WARNING"
    logger = setup_logging(level=log_level, log_file=parsed_args.log_file)

    try:
        if parsed_args.command == "build-invoice":
            return build_invoice(
                order_file=parsed_args.order_file,
                order_number=parsed_args.order_number,
                environment=parsed_args.env,
                as_json=parsed_args.json,
            )

        elif not parsed_args.command:
            parser.print_help()
            return 1

    except Exception as e:
        logger.error(f"Error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
