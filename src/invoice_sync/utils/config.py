"""
Configuration utilities for the invoice sync engine and CLI.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv


class Config:
    """Configuration manager for the invoice sync project."""

    def __init__(self, env_file: Optional[str] = None) -> None:
        """Initialize configuration.

        If an env_file path is provided, load environment variables from it.
        Otherwise, do not auto-load a .env file to keep defaults predictable.
        """
        self.env_file = env_file
        self._load_environment()
        self._config = self._load_config()

    def _load_environment(self) -> None:
        """Load environment variables from explicit .env file if provided."""
        if not self.env_file:
            return
        env_path = Path(self.env_file)
        if env_path.exists():
            load_dotenv(env_path)

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        return {
            "log_level": self._get_str("LOG_LEVEL", default="INFO"),
            # MongoDB settings for the order store
            "mongo_url": self._get_str("DB_CONNECTION_URL", default=""),
            "mongo_db": self._get_str("DB_NAME", default="INVOICE_SYNC_STG"),
            "mongo_orders_collection": self._get_str("ORDERS_COLLECTION", default="STORE_ORDER"),
            "mongo_products_collection": self._get_str("PRODUCTS_COLLECTION", default="INVOICE_PRODUCT"),
            "mongo_settings_collection": self._get_str("SETTINGS_COLLECTION", default="INVOICE_SETTINGS"),
            # Tax and discount settings
            "default_country": self._get_str("DEFAULT_COUNTRY", default="Portugal"),
            "default_vat_rate": self._get_float("DEFAULT_VAT_RATE", default=23.0),
            "reconciliation_tolerance": self._get_float("RECONCILIATION_TOLERANCE", default=0.01),
            # Invoice line settings
            "product_code_prefix": self._get_str("PRODUCT_CODE_PREFIX", default="sho"),
            "exemption_code": self._get_str("EXEMPTION_CODE", default="M01"),
            "shipping_description": self._get_str("SHIPPING_DESCRIPTION", default="Custos de Envio"),
        }

    def _get_str(self, key: str, default: str = "") -> str:
        """Get string configuration value."""
        if self.env_file is None:
            return default
        return os.getenv(key, default)

    def _get_float(self, key: str, default: float = 0.0) -> float:
        """Get float configuration value."""
        if self.env_file is None:
            return default
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            return default

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self._config.get(key, default)

    def __getitem__(self, key: str) -> Any:
        """Get configuration value using bracket notation."""
        return self._config[key]

    def __contains__(self, key: str) -> bool:
        """Check if configuration key exists."""
        return key in self._config
