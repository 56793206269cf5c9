"""Tests for the invoice service and the MongoDB order repository."""

import os
from unittest.mock import MagicMock, patch

import pytest

from invoice_sync.invoicing.engine import InvoiceStage
from invoice_sync.invoicing.errors import UnresolvedProductError
from invoice_sync.invoicing.models import ShippingProduct, order_from_dict
from invoice_sync.invoicing.repository import OrderRepository
from invoice_sync.invoicing.service import InvoiceService
from invoice_sync.utils.config import Config


@pytest.fixture
def mock_client():
    with patch("invoice_sync.invoicing.repository.MongoClient") as client_cls:
        collection = MagicMock()
        client_cls.return_value.__getitem__.return_value.__getitem__.return_value = collection
        yield client_cls, collection


class TestOrderRepository:
    """Test cases for OrderRepository."""

    def test_requires_connection_url(self):
        with pytest.raises(ValueError, match="DB_CONNECTION_URL is required"):
            OrderRepository(config=Config())

    def test_connection_url_from_env_key(self, mock_client):
        with patch.dict(os.environ, {"DB_CONNECTION_URL_STG": "mongodb://stg:27017"}):
            repo = OrderRepository(db_name="orders_stg", connection_url_env_key="DB_CONNECTION_URL_STG", config=Config())

        with repo:
            pass

        client_cls, _ = mock_client
        client_cls.assert_called_once_with("mongodb://stg:27017", serverSelectionTimeoutMS=5000)
        client_cls.return_value.close.assert_called_once()

    def test_get_order_falls_back_to_name(self, mock_client):
        _, collection = mock_client
        collection.find_one.side_effect = [None, {"name": "#1001"}]

        with OrderRepository(url="mongodb://localhost", config=Config()) as repo:
            doc = repo.get_order_by_number("1001")

        assert doc == {"name": "#1001"}
        assert collection.find_one.call_args_list[0][0][0] == {"orderNumber": "1001"}
        assert collection.find_one.call_args_list[1][0][0] == {"name": "#1001"}

    def test_get_order_not_found(self, mock_client):
        _, collection = mock_client
        collection.find_one.return_value = None

        with OrderRepository(url="mongodb://localhost", config=Config()) as repo:
            assert repo.get_order_by_number("9999") is None

    def test_get_product_catalog(self, mock_client):
        _, collection = mock_client
        collection.find.return_value = [
            {"code": "sho1001", "productId": 501},
            {"code": "sho1002", "productId": 502},
            {"code": "", "productId": 503},
            {"code": "sho1004"},
        ]

        with OrderRepository(url="mongodb://localhost", config=Config()) as repo:
            catalog = repo.get_product_catalog()

        assert catalog == {"sho1001": 501, "sho1002": 502}

    def test_get_shipping_product(self, mock_client):
        _, collection = mock_client
        collection.find_one.return_value = {"key": "shipping_product", "productId": "900", "description": "Envio"}

        with OrderRepository(url="mongodb://localhost", config=Config()) as repo:
            assert repo.get_shipping_product() == ShippingProduct(product_id=900, description="Envio")

    def test_missing_shipping_product(self, mock_client):
        _, collection = mock_client
        collection.find_one.return_value = None

        with OrderRepository(url="mongodb://localhost", config=Config()) as repo:
            assert repo.get_shipping_product() is None


class TestInvoiceService:
    """Test cases for InvoiceService."""

    def test_build_invoice_from_raw_order(self, make_item, make_order, catalog):
        service = InvoiceService(config=Config())

        draft = service.build_invoice(make_order([make_item("1001")], total=12.30), catalog)

        assert draft.stage is InvoiceStage.RECONCILED
        assert draft.lines[0].product_id == 501

    def test_build_invoice_from_order(self, make_item, make_order, catalog):
        order = order_from_dict(make_order([make_item("1002")], total=12.30))

        draft = InvoiceService(config=Config()).build_invoice(order, catalog)

        assert draft.lines[0].product_id == 502

    def test_unknown_product(self, make_item, make_order, catalog):
        with pytest.raises(UnresolvedProductError):
            InvoiceService(config=Config()).build_invoice(make_order([make_item("4040")], total=12.30), catalog)

    @patch("invoice_sync.invoicing.service.OrderRepository")
    def test_build_invoice_by_number(self, mock_repo_cls, make_item, make_order, catalog):
        repo = mock_repo_cls.return_value.__enter__.return_value
        repo.get_order_by_number.return_value = make_order([make_item("1001")], total=17.30, shipping=5.00)
        repo.get_product_catalog.return_value = catalog
        repo.get_shipping_product.return_value = ShippingProduct(product_id=900)

        service = InvoiceService(db_name="orders", connection_url_env_key="DB_CONNECTION_URL_STG", config=Config())
        draft = service.build_invoice_by_number("1001")

        repo.get_order_by_number.assert_called_once_with("1001")
        assert mock_repo_cls.call_args.kwargs["db_name"] == "orders"
        assert [line.product_id for line in draft.lines] == [501, 900]

    @patch("invoice_sync.invoicing.service.OrderRepository")
    def test_build_invoice_by_number_not_found(self, mock_repo_cls):
        mock_repo_cls.return_value.__enter__.return_value.get_order_by_number.return_value = None

        with pytest.raises(ValueError, match="Order 1001 not found"):
            InvoiceService(config=Config()).build_invoice_by_number("1001")
