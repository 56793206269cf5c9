"""MongoDB repository for normalized orders and invoicing product mappings."""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

from pymongo import MongoClient

from ..utils.config import Config
from ..utils.logging import get_logger
from .models import ShippingProduct

logger = get_logger(__name__)

SHIPPING_PRODUCT_SETTING = "shipping_product"


class OrderRepository:
    def __init__(self, url: Optional[str] = None, db_name: Optional[str] = None, connection_url_env_key: Optional[str] = None, config: Optional[Config] = None) -> None:
        config = config or Config(".env")

        if connection_url_env_key:
            self._url = os.getenv(connection_url_env_key) or config.get("mongo_url")
        else:
            self._url = url or config.get("mongo_url")

        self._db = db_name or config.get("mongo_db")
        self._orders = config.get("mongo_orders_collection")
        self._products = config.get("mongo_products_collection")
        self._settings = config.get("mongo_settings_collection")
        if not self._url:
            raise ValueError("DB_CONNECTION_URL is required")
        self._client: Optional[MongoClient] = None

    def __enter__(self) -> "OrderRepository":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    def connect(self) -> None:
        if self._client is None:
            self._client = MongoClient(self._url, serverSelectionTimeoutMS=5000)

    def disconnect(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _collection(self, name: str):
        if self._client is None:
            self.connect()
        return self._client[self._db][name]

    def get_order_by_number(self, order_number: str) -> Optional[Dict[str, Any]]:
        """Find an order by number, falling back to the storefront display name (#1001)."""
        coll = self._collection(self._orders)
        for query in ({"orderNumber": order_number}, {"name": f"#{order_number.lstrip('#')}"}):
            doc = coll.find_one(query)
            if doc is not None:
                return doc
            logger.debug(f"No order matched {query}")
        return None

    def get_product_catalog(self) -> Dict[str, Any]:
        """Return the product code -> invoicing product id mapping."""
        coll = self._collection(self._products)
        return {
            doc["code"]: doc["productId"]
            for doc in coll.find({}, {"code": 1, "productId": 1})
            if doc.get("code") and doc.get("productId") is not None
        }

    def get_shipping_product(self) -> Optional[ShippingProduct]:
        coll = self._collection(self._settings)
        doc = coll.find_one({"key": SHIPPING_PRODUCT_SETTING})
        if not doc or doc.get("productId") is None:
            logger.warning("No shipping product configured, invoices will not carry a shipping line")
            return None
        return ShippingProduct(product_id=int(doc["productId"]), description=doc.get("description") or "")
