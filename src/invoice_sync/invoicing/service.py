"""High-level invoice service: load inputs, resolve products, run the engine."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Union

from ..utils.config import Config
from ..utils.logging import get_logger
from .engine import InvoiceDraft, InvoiceEngine
from .lookup import ProductResolver
from .models import Order, ShippingProduct, order_from_dict
from .repository import OrderRepository

logger = get_logger(__name__)


class InvoiceService:
    """High-level service for invoice generation operations."""

    def __init__(self, db_name: str = None, connection_url_env_key: str = None, config: Optional[Config] = None):
        self.config = config or Config(".env")
        self.engine = InvoiceEngine.from_config(self.config)
        self.db_name = db_name
        self.connection_url_env_key = connection_url_env_key

    def build_invoice(
        self,
        order: Union[Order, Dict[str, Any]],
        catalog: Mapping[str, Any],
        shipping_product: Optional[ShippingProduct] = None,
    ) -> InvoiceDraft:
        """
        Build an invoice draft from an order and a product catalog.

        Args:
            order: Order value object or raw order document
            catalog: Product code -> invoicing product id mapping
            shipping_product: Invoicing product for the shipping line

        Returns:
            Reconciled InvoiceDraft
        """
        if not isinstance(order, Order):
            order = order_from_dict(order)
        resolver = ProductResolver(catalog, prefix=self.config.get("product_code_prefix", "sho"))
        product_ids = resolver.resolve_order(order)
        return self.engine.generate(order, product_ids, shipping_product)

    def build_invoice_by_number(self, order_number: str) -> InvoiceDraft:
        """Build an invoice draft for an order stored in MongoDB."""
        with OrderRepository(
            db_name=self.db_name,
            connection_url_env_key=self.connection_url_env_key,
            config=self.config,
        ) as repo:
            order_data = repo.get_order_by_number(order_number)
            if not order_data:
                raise ValueError(f"Order {order_number} not found")
            catalog = repo.get_product_catalog()
            shipping_product = repo.get_shipping_product()

        logger.info(f"Loaded order {order_number} with {len(catalog)} catalog entries")
        return self.build_invoice(order_data, catalog, shipping_product)
