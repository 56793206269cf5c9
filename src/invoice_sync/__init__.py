"""
Invoice Sync - storefront order to invoice reconciliation engine

Turns storefront orders into tax-compliant invoice lines whose total agrees
with the platform's order total, with a CLI for inspecting the result.
"""

__version__ = "0.1.0"

from . import invoicing
from . import utils

__all__ = ["invoicing", "utils"]
